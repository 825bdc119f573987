"""Lazily sniffed data blobs with shared, seekable and fan-out readers."""

from __future__ import annotations

import io
import json
import os
import re
import tempfile
import threading
from dataclasses import asdict, dataclass, is_dataclass
from datetime import datetime, timezone
from enum import IntEnum
from typing import Any, Callable, NamedTuple, Optional

from .errors import ERR_NOT_FOUND
from .fanout import Fanout

MAX_MEMORY_SIZE = 100 << 20  # 100MB
_SNIFF_LEN = 512
_CHUNK = 64 * 1024

ReaderFactory = Callable[[], "tuple[Any, int]"]


class BlobType(IntEnum):
    """Content type of a blob, as detected from its leading bytes."""

    UNKNOWN = 0
    EMPTY = 1
    MEMORY = 2
    JSON = 3
    JPEG = 4
    PNG = 5
    GIF = 6
    WEBP = 7
    AVIF = 8
    HEIF = 9
    TIFF = 10
    JP2 = 11
    BMP = 12
    PDF = 13
    SVG = 14


@dataclass
class Stat:
    """Stat attributes of a stored blob."""

    modified_time: Optional[datetime] = None
    etag: str = ""
    size: int = 0


class Memory(NamedTuple):
    """Raw pixel data of a blob created from memory."""

    data: bytes
    width: int
    height: int
    bands: int


_CONTENT_TYPES = {
    BlobType.JSON: "application/json",
    BlobType.JPEG: "image/jpeg",
    BlobType.PNG: "image/png",
    BlobType.GIF: "image/gif",
    BlobType.WEBP: "image/webp",
    BlobType.AVIF: "image/avif",
    BlobType.HEIF: "image/heif",
    BlobType.TIFF: "image/tiff",
    BlobType.JP2: "image/jp2",
    BlobType.PDF: "application/pdf",
    BlobType.BMP: "image/bmp",
    BlobType.SVG: "image/svg+xml",
}

_EXTENSIONS = {
    BlobType.JPEG: ".jpg",
    BlobType.PNG: ".png",
    BlobType.GIF: ".gif",
    BlobType.WEBP: ".webp",
    BlobType.AVIF: ".avif",
    BlobType.HEIF: ".heif",
    BlobType.TIFF: ".tiff",
    BlobType.JP2: ".jp2",
    BlobType.BMP: ".bmp",
    BlobType.PDF: ".pdf",
    BlobType.JSON: ".json",
    BlobType.SVG: ".svg",
}

_SVG_COMMENT = re.compile(rb"<!--.*?-->", re.S)
_SVG_TAG = re.compile(rb"\A\s*(?:(<!DOCTYPE\s+svg([\s:]+.*?>|>))\s*)*<svg\b", re.S | re.I)
_SVG_TAG_IN_XML = re.compile(
    rb"\A<\?xml\b.*?\?>\s*(?:(<!DOCTYPE\s+svg([\s:]+.*?>|>))\s*)*<svg\b", re.S | re.I
)

_JP2_BRANDS = (b"jp2 ", b"jpx ", b"jpm ")
_HEIF_BRANDS = (b"heic", b"mif1", b"msf1")


def _detect_blob_type(buf: bytes) -> BlobType:
    head4, box, brand = buf[:4], buf[4:8], buf[8:12]
    if buf[:3] == b"\xff\xd8\xff":
        return BlobType.JPEG
    if head4 == b"\x89PNG":
        return BlobType.PNG
    if buf[:3] == b"GIF":
        return BlobType.GIF
    if brand == b"WEBP":
        return BlobType.WEBP
    if box == b"ftyp" and brand == b"avif":
        return BlobType.AVIF
    if box == b"ftyp" and brand in _HEIF_BRANDS:
        return BlobType.HEIF
    if head4 in (b"II*\x00", b"MM\x00*"):
        return BlobType.TIFF
    if box in (b"jP  ", b"jP2 ") and buf[20:24] in _JP2_BRANDS:
        return BlobType.JP2
    if head4 == b"%PDF":
        return BlobType.PDF
    if buf[:2] == b"BM":
        return BlobType.BMP
    return BlobType.UNKNOWN


# --- generic content sniffing -------------------------------------------------

_WHITESPACE = b"\t\n\x0c\r "
_HTML_TAGS = (
    b"<!DOCTYPE HTML", b"<HTML", b"<HEAD", b"<SCRIPT", b"<IFRAME", b"<H1", b"<DIV",
    b"<FONT", b"<TABLE", b"<A", b"<STYLE", b"<TITLE", b"<B", b"<BODY", b"<BR", b"<P",
    b"<!--",
)
_BINARY_BYTES = frozenset([*range(0x00, 0x09), 0x0B, *range(0x0E, 0x1B), *range(0x1C, 0x20)])


def _exact(pattern: bytes, content_type: str) -> tuple[bytes, bytes, bool, str]:
    return pattern, b"\xff" * len(pattern), False, content_type


def _masked(pattern: bytes, mask: bytes, content_type: str, skip_ws: bool = False):
    return pattern, mask, skip_ws, content_type


_RIFF_MASK = b"\xff\xff\xff\xff\x00\x00\x00\x00\xff\xff\xff\xff"

_SIGNATURES_BEFORE_MP4 = (
    _masked(b"<?xml", b"\xff" * 5, "text/xml; charset=utf-8", skip_ws=True),
    _exact(b"%PDF-", "application/pdf"),
    _exact(b"%!PS-Adobe-", "application/postscript"),
    _masked(b"\xfe\xff\x00\x00", b"\xff\xff\x00\x00", "text/plain; charset=utf-16be"),
    _masked(b"\xff\xfe\x00\x00", b"\xff\xff\x00\x00", "text/plain; charset=utf-16le"),
    _masked(b"\xef\xbb\xbf\x00", b"\xff\xff\xff\x00", "text/plain; charset=utf-8"),
    _exact(b"\x00\x00\x01\x00", "image/x-icon"),
    _exact(b"\x00\x00\x02\x00", "image/x-icon"),
    _exact(b"BM", "image/bmp"),
    _exact(b"GIF87a", "image/gif"),
    _exact(b"GIF89a", "image/gif"),
    _masked(b"RIFF\x00\x00\x00\x00WEBPVP", _RIFF_MASK + b"\xff\xff", "image/webp"),
    _exact(b"\x89PNG\r\n\x1a\n", "image/png"),
    _exact(b"\xff\xd8\xff", "image/jpeg"),
    _masked(b"FORM\x00\x00\x00\x00AIFF", _RIFF_MASK, "audio/aiff"),
    _exact(b"ID3", "audio/mpeg"),
    _exact(b"OggS\x00", "application/ogg"),
    _exact(b"MThd\x00\x00\x00\x06", "audio/midi"),
    _masked(b"RIFF\x00\x00\x00\x00AVI ", _RIFF_MASK, "video/avi"),
    _masked(b"RIFF\x00\x00\x00\x00WAVE", _RIFF_MASK, "audio/wave"),
)

_SIGNATURES_AFTER_MP4 = (
    _exact(b"\x1a\x45\xdf\xa3", "video/webm"),
    _exact(b"\x00\x01\x00\x00", "font/ttf"),
    _exact(b"OTTO", "font/otf"),
    _exact(b"ttcf", "font/collection"),
    _exact(b"wOFF", "font/woff"),
    _exact(b"wOF2", "font/woff2"),
    _exact(b"\x1f\x8b\x08", "application/x-gzip"),
    _exact(b"PK\x03\x04", "application/zip"),
    _exact(b"Rar!\x1a\x07\x00", "application/x-rar-compressed"),
    _exact(b"Rar!\x1a\x07\x01\x00", "application/x-rar-compressed"),
    _exact(b"\x00asm", "application/wasm"),
)


def _html_match(data: bytes, tag: bytes) -> bool:
    if len(data) < len(tag) + 1:
        return False
    for byte, expected in zip(data, tag):
        if 0x41 <= expected <= 0x5A:
            byte &= 0xDF
        if byte != expected:
            return False
    return data[len(tag)] in b" >"


def _mask_match(data: bytes, pattern: bytes, mask: bytes) -> bool:
    if len(data) < len(mask):
        return False
    return all((byte & m) == p for byte, m, p in zip(data, mask, pattern))


def _mp4_match(data: bytes) -> bool:
    if len(data) < 12:
        return False
    box_size = int.from_bytes(data[:4], "big")
    if len(data) < box_size or box_size % 4 != 0:
        return False
    if data[4:8] != b"ftyp":
        return False
    return any(data[st:st + 3] == b"mp4" for st in range(8, box_size, 4) if st != 12)


def _detect_content_type(data: bytes) -> str:
    """Sniff a MIME type from leading bytes, falling back to text or octet-stream."""
    data = data[:_SNIFF_LEN]
    stripped = data.lstrip(_WHITESPACE)
    if any(_html_match(stripped, tag) for tag in _HTML_TAGS):
        return "text/html; charset=utf-8"
    for pattern, mask, skip_ws, content_type in _SIGNATURES_BEFORE_MP4:
        if _mask_match(stripped if skip_ws else data, pattern, mask):
            return content_type
    if _mp4_match(data):
        return "video/mp4"
    for pattern, mask, skip_ws, content_type in _SIGNATURES_AFTER_MP4:
        if _mask_match(stripped if skip_ws else data, pattern, mask):
            return content_type
    if not any(byte in _BINARY_BYTES for byte in stripped):
        return "text/plain; charset=utf-8"
    return "application/octet-stream"


# --- reader helpers -----------------------------------------------------------


def _is_seekable(reader: Any) -> bool:
    check = getattr(reader, "seekable", None)
    if not callable(check) or not callable(getattr(reader, "seek", None)):
        return False
    try:
        return bool(check())
    except (OSError, ValueError):
        return False


def _close_quietly(reader: Any) -> None:
    close = getattr(reader, "close", None)
    if callable(close):
        try:
            close()
        except Exception:
            pass


def _read_up_to(reader: Any, n: int) -> tuple[bytes, Optional[BaseException]]:
    chunks: list[bytes] = []
    got = 0
    err: Optional[BaseException] = None
    while got < n:
        try:
            chunk = reader.read(n - got)
        except Exception as exc:
            err = exc
            break
        if not chunk:
            break
        chunks.append(chunk)
        got += len(chunk)
    return b"".join(chunks), err


def _new_empty_reader() -> tuple[io.BytesIO, int]:
    return io.BytesIO(b""), 0


class _HybridReadSeeker:
    """Reads from a cheap reader, switching to a real seeker once seeked."""

    def __init__(self, reader: Any, new_read_seeker: ReaderFactory) -> None:
        self._reader = reader
        self._seeker: Any = None
        self._new_read_seeker = new_read_seeker
        self._pos = 0

    def readable(self) -> bool:
        return True

    def seekable(self) -> bool:
        return True

    def read(self, size: Optional[int] = -1) -> bytes:
        data = self._reader.read(-1 if size is None else size)
        self._pos += len(data)
        return data

    def seek(self, offset: int, whence: int = io.SEEK_SET) -> int:
        if self._seeker is None:
            seeker, _ = self._new_read_seeker()
            _close_quietly(self._reader)
            self._seeker = self._reader = seeker
        return self._seeker.seek(offset, whence)

    def tell(self) -> int:
        if self._seeker is not None:
            return self._seeker.tell()
        return self._pos

    def close(self) -> None:
        _close_quietly(self._reader)

    def __enter__(self) -> _HybridReadSeeker:
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()


class _SeekStream:
    """Buffers a forward-only reader so that it can be seeked."""

    def __init__(self, source: Any, buffer: Any) -> None:
        self._source = source
        self._buffer = buffer
        self._loaded = 0
        self._pos = 0
        self._eof = False
        self._closed = False

    def readable(self) -> bool:
        return True

    def seekable(self) -> bool:
        return True

    def _fill(self, target: Optional[int]) -> None:
        while not self._eof and (target is None or self._loaded < target):
            chunk = self._source.read(_CHUNK)
            if not chunk:
                self._eof = True
                _close_quietly(self._source)
                break
            self._buffer.seek(self._loaded)
            self._buffer.write(chunk)
            self._loaded += len(chunk)

    def read(self, size: Optional[int] = -1) -> bytes:
        if self._closed:
            raise ValueError("I/O operation on closed stream")
        if size is None or size < 0:
            self._fill(None)
            end = self._loaded
        else:
            self._fill(self._pos + size)
            end = min(self._loaded, self._pos + size)
        if end <= self._pos:
            return b""
        self._buffer.seek(self._pos)
        data = self._buffer.read(end - self._pos)
        self._pos += len(data)
        return data

    def seek(self, offset: int, whence: int = io.SEEK_SET) -> int:
        if whence == io.SEEK_SET:
            pos = offset
        elif whence == io.SEEK_CUR:
            pos = self._pos + offset
        elif whence == io.SEEK_END:
            self._fill(None)
            pos = self._loaded + offset
        else:
            raise ValueError(f"invalid whence: {whence}")
        if pos < 0:
            raise ValueError("negative seek position")
        self._pos = pos
        return pos

    def tell(self) -> int:
        return self._pos

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        _close_quietly(self._source)
        self._buffer.close()

    def __enter__(self) -> _SeekStream:
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()


# --- blob ---------------------------------------------------------------------


class Blob:
    """A data blob whose type is sniffed lazily from its first 512 bytes.

    Readers come from a factory returning ``(reader, size)``; a size of 0
    means unknown. When the size is known and small enough, the source is
    read only once and fanned out to every reader.
    """

    def __init__(
        self,
        new_reader: Optional[ReaderFactory] = None,
        *,
        fanout: bool = False,
        blob_type: BlobType = BlobType.UNKNOWN,
        err: Optional[BaseException] = None,
        filepath: str = "",
        memory: Optional[Memory] = None,
    ) -> None:
        self._new_reader = new_reader
        self._new_read_seeker: Optional[ReaderFactory] = None
        self._fanout = fanout
        self._type = blob_type
        self._err = err
        self._filepath = filepath
        self._memory = memory
        self._sniff = b""
        self._size = 0
        self._content_type = ""
        self._lock = threading.Lock()
        self._initialized = False
        self.stat: Optional[Stat] = None

    def _init(self) -> None:
        with self._lock:
            if not self._initialized:
                self._initialized = True
                self._do_init()

    def _do_init(self) -> None:
        if self._err is not None:
            return
        if self._new_reader is None:
            self._type = BlobType.MEMORY if self._memory is not None else BlobType.EMPTY
            self._new_reader = _new_empty_reader
            return
        try:
            reader, size = self._new_reader()
        except Exception as exc:
            self._err = exc
            return
        if reader is None:
            return
        self._size = size
        if _is_seekable(reader):
            self._new_read_seeker = self._new_reader
        if self._fanout and 0 < size < MAX_MEMORY_SIZE:
            fanout = Fanout(reader, size)
            self._new_reader = lambda: (fanout.new_reader(), size)
            reader = fanout.new_reader()
            if self._new_read_seeker is not None:
                inner = self._new_read_seeker
                self._new_read_seeker = lambda: (
                    _HybridReadSeeker(fanout.new_reader(), inner),
                    size,
                )
        else:
            self._fanout = False

        data, err = _read_up_to(reader, _SNIFF_LEN)
        _close_quietly(reader)
        self._sniff = data
        if not data:
            self._type = BlobType.EMPTY
        if err is not None:
            if self._err is None:
                self._err = err
            return
        if (
            self._type not in (BlobType.EMPTY, BlobType.JSON, BlobType.SVG)
            and len(data) > 24
        ):
            detected = _detect_blob_type(data)
            if detected is not BlobType.UNKNOWN:
                self._type = detected
        if not self._content_type:
            self._content_type = _CONTENT_TYPES.get(self._type) or _detect_content_type(data)
        if self._type is BlobType.UNKNOWN:
            self._detect_text_types(data)

    def _detect_text_types(self, data: bytes) -> None:
        if self._content_type.startswith("text/plain") and data[:2] == b'{"':
            self._type = BlobType.JSON
            self._content_type = "application/json"
        by_html = self._content_type.startswith(("text/plain", "text/html"))
        by_xml = self._content_type.startswith("text/xml")
        if by_html or by_xml:
            processed = _SVG_COMMENT.sub(b"", data).strip()
            if (by_html and _SVG_TAG.match(processed)) or (
                by_xml and _SVG_TAG_IN_XML.match(processed)
            ):
                self._type = BlobType.SVG
                self._content_type = "image/svg+xml"

    def is_empty(self) -> bool:
        """Whether the blob holds no data."""
        self._init()
        return self._type is BlobType.EMPTY

    def supports_animation(self) -> bool:
        """Whether the blob's format can be animated."""
        self._init()
        return self._type in (BlobType.GIF, BlobType.WEBP)

    def blob_type(self) -> BlobType:
        self._init()
        return self._type

    def sniff(self) -> bytes:
        """The first 512 bytes of data, used for type sniffing."""
        self._init()
        return self._sniff

    def size(self) -> int:
        """The size of the data if known, otherwise 0."""
        self._init()
        return self._size

    def file_path(self) -> str:
        """The file path, if the blob was created from a file."""
        return self._filepath

    def memory(self) -> Optional[Memory]:
        """The raw pixel data, if the blob was created from memory."""
        return self._memory

    def set_content_type(self, content_type: str) -> None:
        """Override the sniffed content type."""
        self._content_type = content_type

    def content_type(self) -> str:
        self._init()
        return self._content_type

    def new_reader(self) -> tuple[Any, int]:
        """Open a new reader; returns ``(reader, size)``."""
        self._init()
        assert self._new_reader is not None
        return self._new_reader()

    def new_read_seeker(self) -> tuple[Any, int]:
        """Open a seekable reader, buffering in memory or a temp file when needed."""
        self._init()
        if self._new_read_seeker is not None:
            return self._new_read_seeker()
        reader, size = self.new_reader()
        if 0 < size < MAX_MEMORY_SIZE:
            buffer: Any = io.BytesIO()
        else:
            buffer = tempfile.TemporaryFile(prefix="imagor-")
        return _SeekStream(reader, buffer), size

    def read_all(self) -> bytes:
        """Read all data; raises the blob's error if reading fails."""
        self._init()
        if self._type is BlobType.EMPTY:
            if self._err is not None:
                raise self._err
            return b""
        reader, size = self.new_reader()
        try:
            if size > 0:
                data, err = _read_up_to(reader, size)
                if err is not None:
                    raise err
                if len(data) < size:
                    raise EOFError("unexpected EOF")
                return data
            return reader.read()
        finally:
            _close_quietly(reader)

    def err(self) -> Optional[BaseException]:
        """The error encountered while opening or sniffing, if any."""
        self._init()
        return self._err


def new_blob(new_reader: ReaderFactory) -> Blob:
    """Create a blob from a factory returning ``(reader, size)``; size 0 means unknown."""
    return Blob(new_reader, fanout=True)


def new_blob_from_file(path: str, *args: Callable[[os.stat_result], None]) -> Blob:
    """Create a blob from a file; each check receives the stat result and raises to reject."""
    err: Optional[BaseException] = None
    stat: Optional[os.stat_result] = None
    try:
        stat = os.stat(path)
    except FileNotFoundError:
        err = ERR_NOT_FOUND
    except OSError as exc:
        err = exc
    if err is None and stat is not None:
        for check in args:
            try:
                check(stat)
            except Exception as exc:
                err = exc
                break

    def open_file() -> tuple[Any, int]:
        if err is not None:
            raise err
        return open(path, "rb"), stat.st_size if stat is not None else 0

    blob = Blob(open_file, fanout=True, err=err, filepath=path)
    if err is None and stat is not None:
        blob.stat = Stat(
            size=stat.st_size,
            modified_time=datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc),
        )
    return blob


def _json_default(value: Any) -> Any:
    to_dict = getattr(value, "to_dict", None)
    if callable(to_dict):
        return to_dict()
    if is_dataclass(value) and not isinstance(value, type):
        return asdict(value)
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def _marshal_json(value: Any) -> bytes:
    text = json.dumps(value, separators=(",", ":"), ensure_ascii=False, default=_json_default)
    for char, escaped in (
        ("<", "\\u003c"), (">", "\\u003e"), ("&", "\\u0026"),
        ("\u2028", "\\u2028"), ("\u2029", "\\u2029"),
    ):
        text = text.replace(char, escaped)
    return text.encode("utf-8")


def new_blob_from_json(value: Any) -> Blob:
    """Create a JSON blob from the compact JSON encoding of ``value``."""
    err: Optional[BaseException] = None
    try:
        buf = _marshal_json(value)
    except (TypeError, ValueError) as exc:
        buf, err = b"", exc
    return Blob(lambda: (io.BytesIO(buf), len(buf)), blob_type=BlobType.JSON, err=err)


def new_blob_from_bytes(buf: bytes) -> Blob:
    """Create a blob from an in-memory buffer."""
    data = bytes(buf)
    return Blob(lambda: (io.BytesIO(data), len(data)))


def new_blob_from_memory(buf: bytes, width: int, height: int, bands: int) -> Blob:
    """Create a blob holding raw RGB/RGBA pixel data."""
    return Blob(memory=Memory(buf, width, height, bands))


def new_empty_blob() -> Blob:
    """Create an empty blob."""
    return Blob()


def is_blob_empty(blob: Optional[Blob]) -> bool:
    """Whether ``blob`` is missing or empty."""
    return blob is None or blob.is_empty()


def check_blob(blob: Optional[Blob]) -> Optional[Blob]:
    """Return ``blob``, raising its error if it has one."""
    if blob is not None:
        err = blob.err()
        if err is not None:
            raise err
    return blob


def get_extension(typ: BlobType) -> str:
    """File extension for a blob type, or an empty string."""
    return _EXTENSIONS.get(typ, "")