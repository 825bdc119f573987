"""Suppression of concurrent duplicate work keyed by result key."""

from __future__ import annotations

import threading
from concurrent.futures import CancelledError
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from .context import Context

Callback = Callable[..., None]
WorkFunc = Callable[[Context, Callback], Any]

_POLL_INTERVAL = 0.01


@dataclass(frozen=True)
class _SuppressKey:
    key: str


def _noop(blob: Any = None, err: Optional[BaseException] = None) -> None:
    pass


@dataclass
class _Call:
    done: threading.Event = field(default_factory=threading.Event)
    blob: Any = None
    err: Optional[BaseException] = None
    listeners: list = field(default_factory=list)


class Suppressor:
    """Runs at most one piece of work per key at a time, sharing its result.

    The work function receives a context and a callback ``cb(blob, err=None)``
    with which it can hand a result to its caller before it finishes.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._calls: dict[str, _Call] = {}

    def suppress(self, ctx: Context, key: str, fn: WorkFunc) -> Any:
        """Run ``fn`` for ``key``, joining an identical call already in flight."""
        if not key:
            return fn(ctx, _noop)
        if ctx.value(_SuppressKey(key)) is True:
            # already inside this key's work: run directly to avoid deadlock
            return fn(ctx, _noop)

        wake = threading.Event()
        early: list[tuple[Any, Optional[BaseException]]] = []

        def cb(blob: Any = None, err: Optional[BaseException] = None) -> None:
            if not early:
                early.append((blob, err))
            wake.set()

        state = {"canceled": False}
        with self._lock:
            call = self._calls.get(key)
            leader = call is None
            if call is None:
                call = _Call()
                self._calls[key] = call
            call.listeners.append(wake)
        if leader:
            threading.Thread(
                target=self._run, args=(call, key, ctx, fn, cb, state), daemon=True
            ).start()

        while True:
            if call.done.is_set():
                if not state["canceled"] and isinstance(call.err, CancelledError):
                    return self.suppress(ctx, key, fn)
                if call.err is not None:
                    raise call.err
                return call.blob
            if early:
                blob, err = early[0]
                if err is not None:
                    raise err
                return blob
            err = ctx.err()
            if err is not None:
                raise err
            wake.wait(_POLL_INTERVAL)

    def _forget(self, key: str, call: _Call) -> list:
        with self._lock:
            if self._calls.get(key) is call:
                del self._calls[key]
            return list(call.listeners)

    def _run(
        self,
        call: _Call,
        key: str,
        ctx: Context,
        fn: WorkFunc,
        cb: Callback,
        state: dict,
    ) -> None:
        blob: Any = None
        err: Optional[BaseException] = None
        try:
            blob = fn(ctx.with_value(_SuppressKey(key), True), cb)
        except Exception as exc:
            err = exc
        if isinstance(err, CancelledError):
            self._forget(key, call)
            state["canceled"] = True
        call.blob, call.err = blob, err
        listeners = self._forget(key, call)
        call.done.set()
        for listener in listeners:
            listener.set()