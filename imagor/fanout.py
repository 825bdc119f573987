"""Fan out one source stream of known size to any number of concurrent readers."""

from __future__ import annotations

import threading
from typing import BinaryIO


class Fanout:
    """Reads a source once, in the background, and serves its bytes to many readers.

    The source is read at most ``size`` bytes. If it ends early, the effective
    size shrinks to what was read. An error raised by the source is raised to
    each reader once it has consumed all data that arrived before the error.
    """

    def __init__(self, source: BinaryIO, size: int) -> None:
        self._source = source
        self._size = size
        self._buf = bytearray()
        self._err: BaseException | None = None
        self._done = False
        self._started = False
        self._cond = threading.Condition()

    def new_reader(self) -> FanoutReader:
        """Create a new reader that starts at the beginning of the stream."""
        return FanoutReader(self)

    def _start(self) -> None:
        with self._cond:
            if self._started:
                return
            self._started = True
        threading.Thread(target=self._read_all, daemon=True).start()

    def _read_all(self) -> None:
        try:
            while True:
                with self._cond:
                    remaining = self._size - len(self._buf)
                if remaining <= 0:
                    break
                try:
                    chunk = self._source.read(remaining)
                except Exception as exc:
                    with self._cond:
                        self._err = exc
                        self._size = len(self._buf)
                        self._cond.notify_all()
                    break
                if not chunk:
                    with self._cond:
                        self._size = len(self._buf)
                        self._cond.notify_all()
                    break
                with self._cond:
                    self._buf += chunk[:remaining]
                    self._cond.notify_all()
        finally:
            with self._cond:
                self._done = True
                self._cond.notify_all()
            try:
                self._source.close()
            except Exception:
                pass


class FanoutReader:
    """A file-like reader spawned from a :class:`Fanout`."""

    def __init__(self, fanout: Fanout) -> None:
        self._fanout = fanout
        self._pos = 0
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def readable(self) -> bool:
        return True

    def read(self, size: int | None = -1) -> bytes:
        """Read up to ``size`` bytes, or everything left when ``size`` is negative.

        Blocks until the requested amount is available or the stream ends.
        Raises :class:`BrokenPipeError` once the reader has been closed.
        """
        if self._closed:
            raise BrokenPipeError("read from closed fanout reader")
        if size == 0:
            return b""
        want = None if size is None or size < 0 else size
        fanout = self._fanout
        fanout._start()
        chunks: list[bytes] = []
        got = 0
        with fanout._cond:
            while True:
                if self._pos >= fanout._size:
                    if fanout._err is not None and not chunks:
                        raise fanout._err
                    break
                available = len(fanout._buf) - self._pos
                if available <= 0:
                    if fanout._done:
                        break
                    fanout._cond.wait()
                    continue
                take = available if want is None else min(available, want - got)
                chunks.append(bytes(fanout._buf[self._pos:self._pos + take]))
                self._pos += take
                got += take
                if want is not None and got >= want:
                    break
        return b"".join(chunks)

    def close(self) -> None:
        """Close the reader; later reads raise :class:`BrokenPipeError`."""
        self._closed = True

    def __enter__(self) -> FanoutReader:
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()