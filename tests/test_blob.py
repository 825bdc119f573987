import io
import json
import threading

import pytest

from imagor.blob import (
    BlobType,
    Memory,
    check_blob,
    get_extension,
    is_blob_empty,
    new_blob,
    new_blob_from_bytes,
    new_blob_from_file,
    new_blob_from_json,
    new_blob_from_memory,
    new_empty_blob,
)
from imagor.errors import ERR_NOT_FOUND, ImagorError

PADDING = bytes(range(256)) * 8

SAMPLES = [
    ("jpeg", b"\xff\xd8\xff\xe0" + PADDING, "image/jpeg", ".jpg", BlobType.JPEG, False),
    ("png", b"\x89PNG\r\n\x1a\n" + PADDING, "image/png", ".png", BlobType.PNG, False),
    ("tiff", b"II*\x00" + PADDING, "image/tiff", ".tiff", BlobType.TIFF, False),
    ("gif", b"GIF89a" + PADDING, "image/gif", ".gif", BlobType.GIF, True),
    ("webp", b"RIFF\x00\x00\x00\x00WEBPVP8 " + PADDING, "image/webp", ".webp", BlobType.WEBP, True),
    ("avif", b"\x00\x00\x00\x1cftypavif" + PADDING, "image/avif", ".avif", BlobType.AVIF, False),
    ("heif", b"\x00\x00\x00\x18ftypheic" + PADDING, "image/heif", ".heif", BlobType.HEIF, False),
    (
        "jp2",
        b"\x00\x00\x00\x0cjP  \r\n\x87\n\x00\x00\x00\x14ftypjp2 " + PADDING,
        "image/jp2",
        ".jp2",
        BlobType.JP2,
        False,
    ),
    ("pdf", b"%PDF-1.4\n" + PADDING, "application/pdf", ".pdf", BlobType.PDF, False),
    ("bmp", b"BM" + PADDING, "image/bmp", ".bmp", BlobType.BMP, False),
    (
        "svg",
        b'<?xml version="1.0"?>\n<!-- drawing -->\n<svg width="10" height="10">'
        + b'<rect width="10" height="10"/>' * 40
        + b"</svg>",
        "image/svg+xml",
        ".svg",
        BlobType.SVG,
        False,
    ),
]


class Stream:
    """A forward-only reader without seek support."""

    def __init__(self, data):
        self._buf = io.BytesIO(data)

    def read(self, n=-1):
        return self._buf.read(n)

    def close(self):
        pass


def check_readers(blob, data, known_size=True):
    reader, size = blob.new_reader()
    try:
        assert reader.read() == data
    finally:
        reader.close()
    assert size == (len(data) if known_size else 0)

    rs, size = blob.new_read_seeker()
    try:
        assert rs.read() == data
        for _ in range(3):
            assert rs.seek(0) == 0
            assert rs.read() == data
    finally:
        rs.close()
    assert size == (len(data) if known_size else 0)


def check_type(blob, content_type, blob_type, animated):
    assert blob.supports_animation() is animated
    assert blob.content_type() == content_type
    assert blob.blob_type() == blob_type
    assert not blob.is_empty()
    assert blob.sniff()
    assert blob.err() is None


@pytest.mark.parametrize(
    "name,data,content_type,extension,blob_type,animated",
    SAMPLES,
    ids=[s[0] for s in SAMPLES],
)
def test_blob_types(tmp_path, name, data, content_type, extension, blob_type, animated):
    path = tmp_path / f"sample.{name}"
    path.write_bytes(data)

    blob = new_blob_from_file(str(path), lambda st: None)
    check_type(blob, content_type, blob_type, animated)
    assert blob.file_path() == str(path)
    assert get_extension(blob.blob_type()) == extension
    assert blob.size() == len(data)
    assert blob.stat.size == len(data)
    buf = blob.read_all()
    assert buf == data
    check_readers(blob, data)

    blob = new_blob_from_bytes(buf)
    check_type(blob, content_type, blob_type, animated)
    assert blob.size() == len(data)
    check_readers(blob, data)

    blob = new_blob(lambda: (Stream(buf), len(buf)))
    check_type(blob, content_type, blob_type, animated)
    assert blob.size() == len(data)
    check_readers(blob, data)

    blob = new_blob(lambda: (Stream(buf), 0))
    check_type(blob, content_type, blob_type, animated)
    assert blob.size() == 0
    check_readers(blob, data, known_size=False)


def test_sniff_is_first_512_bytes():
    data = b"\xff\xd8\xff" + PADDING
    blob = new_blob_from_bytes(data)
    assert blob.sniff() == data[:512]


def test_new_empty_blob(tmp_path):
    blob = new_blob_from_bytes(b"")
    assert blob.sniff() == b""
    assert blob.is_empty()
    assert blob.blob_type() == BlobType.EMPTY
    assert blob.read_all() == b""

    blob = new_empty_blob()
    assert blob.blob_type() == BlobType.EMPTY
    assert blob.is_empty()
    assert blob.sniff() == b""
    assert blob.size() == 0
    assert blob.read_all() == b""
    reader, size = blob.new_reader()
    assert size == 0
    assert reader.read() == b""

    empty = tmp_path / "empty"
    empty.write_bytes(b"")
    blob = new_blob_from_file(str(empty))
    assert blob.blob_type() == BlobType.EMPTY
    assert blob.is_empty()
    assert blob.sniff() == b""
    assert blob.size() == 0
    assert blob.read_all() == b""


def test_new_blob_from_memory():
    blob = new_empty_blob()
    assert blob.memory() is None
    assert blob.is_empty()

    blob = new_blob_from_memory(bytes([167, 169]), 2, 1, 1)
    assert blob.blob_type() == BlobType.MEMORY
    assert not blob.is_empty()
    assert blob.memory() == Memory(bytes([167, 169]), 2, 1, 1)


def test_new_json_blob():
    blob = new_blob_from_json({"foo": "bar"})
    assert blob.blob_type() == BlobType.JSON
    assert blob.content_type() == "application/json"
    assert blob.sniff() == b'{"foo":"bar"}'
    assert blob.read_all() == b'{"foo":"bar"}'


def test_json_blob_escapes_html():
    blob = new_blob_from_json({"a": "<b>&"})
    data = blob.read_all()
    assert data == b'{"a":"\\u003cb\\u003e\\u0026"}'
    assert json.loads(data) == {"a": "<b>&"}


def test_json_blob_error():
    blob = new_blob_from_json({"a": object()})
    assert isinstance(blob.err(), TypeError)
    assert blob.blob_type() == BlobType.JSON


def test_blob_override_content_type():
    blob = new_blob_from_bytes(b"\xff\xd8\xff\xe0" + PADDING)
    blob.set_content_type("foo/bar")
    assert blob.blob_type() == BlobType.JPEG
    assert blob.content_type() == "foo/bar"


def test_blob_json_bytes():
    blob = new_blob_from_bytes(b'{"foo": "bar"}')
    assert blob.blob_type() == BlobType.JSON
    assert blob.content_type() == "application/json"
    assert get_extension(blob.blob_type()) == ".json"


def test_plain_text_and_html():
    blob = new_blob_from_bytes(b"hello world")
    assert blob.blob_type() == BlobType.UNKNOWN
    assert blob.content_type() == "text/plain; charset=utf-8"
    assert get_extension(blob.blob_type()) == ""

    blob = new_blob_from_bytes(b"<html><body>hi</body></html>")
    assert blob.blob_type() == BlobType.UNKNOWN
    assert blob.content_type() == "text/html; charset=utf-8"


def test_svg_without_xml_header():
    blob = new_blob_from_bytes(b'  <!DOCTYPE svg>\n<svg width="1"></svg>')
    assert blob.blob_type() == BlobType.SVG
    assert blob.content_type() == "image/svg+xml"


def test_blob_create_error():
    err = RuntimeError("some error")

    def factory():
        raise err

    blob = new_blob(factory)
    assert blob.err() is err
    with pytest.raises(RuntimeError) as info:
        blob.read_all()
    assert info.value is err


class FailingStream:
    def __init__(self, data, err):
        self._data = data
        self._err = err
        self.calls = 0

    def read(self, n=-1):
        if self.calls > 4:
            raise self._err
        self.calls += 1
        if n < 0 or n > 100:
            n = 100
        chunk, self._data = self._data[:n], self._data[n:]
        return chunk

    def close(self):
        pass


def test_blob_reader_error():
    err = RuntimeError("some error")
    data = b"\xff\xd8\xff\xe0" + PADDING
    source = FailingStream(data, err)
    blob = new_blob(lambda: (source, len(data)))
    assert blob.err() is err
    assert len(blob.sniff()) == 500
    with pytest.raises(RuntimeError) as info:
        blob.read_all()
    assert info.value is err


def test_file_not_found(tmp_path):
    blob = new_blob_from_file(str(tmp_path / "missing"))
    assert blob.err() == ERR_NOT_FOUND
    assert blob.stat is None
    with pytest.raises(ImagorError) as info:
        blob.read_all()
    assert info.value.code == 404


def test_file_check_rejects(tmp_path):
    path = tmp_path / "big"
    path.write_bytes(b"abc" * 100)

    def check(stat):
        if stat.st_size > 10:
            raise ValueError("too large")

    blob = new_blob_from_file(str(path), check)
    assert isinstance(blob.err(), ValueError)
    with pytest.raises(ValueError):
        check_blob(blob)


def test_check_blob_and_is_blob_empty():
    blob = new_blob_from_bytes(b"data")
    assert check_blob(blob) is blob
    assert check_blob(None) is None
    assert is_blob_empty(None)
    assert is_blob_empty(new_empty_blob())
    assert not is_blob_empty(blob)


def test_fanout_concurrent_readers():
    data = b"\x89PNG\r\n\x1a\n" + PADDING * 4
    opened = []

    def factory():
        opened.append(1)
        return Stream(data), len(data)

    blob = new_blob(factory)
    assert blob.blob_type() == BlobType.PNG
    results = []
    lock = threading.Lock()

    def worker():
        reader, _ = blob.new_reader()
        content = reader.read()
        with lock:
            results.append(content)

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()
    assert results == [data] * 8
    assert len(opened) == 1


def test_read_seeker_seek_end_and_tell():
    data = b"0123456789" * 100
    blob = new_blob(lambda: (Stream(data), 0))
    rs, _ = blob.new_read_seeker()
    try:
        assert rs.seek(-10, io.SEEK_END) == len(data) - 10
        assert rs.read() == data[-10:]
        rs.seek(5)
        assert rs.read(3) == b"567"
        assert rs.tell() == 8
    finally:
        rs.close()


def test_get_extension_values():
    assert get_extension(BlobType.JPEG) == ".jpg"
    assert get_extension(BlobType.SVG) == ".svg"
    assert get_extension(BlobType.EMPTY) == ""
    assert get_extension(BlobType.MEMORY) == ""