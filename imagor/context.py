"""Cancellable request contexts with values, deadlines and deferred cleanup."""

from __future__ import annotations

import threading
import time
from concurrent.futures import CancelledError
from typing import Any, Callable


class _Key:
    def __init__(self, name: str) -> None:
        self._name = name

    def __repr__(self) -> str:
        return f"<context key {self._name}>"


_NO_KEY = _Key("none")
_IMAGOR_KEY = _Key("imagor")
_DETACH_KEY = _Key("detach")


class Context:
    """A cancellation scope that carries values down a chain of derived contexts.

    Cancelling a context cancels every context derived from it. ``err()`` is
    ``None`` while the context is live, a :class:`CancelledError` after
    :meth:`cancel`, and a :class:`TimeoutError` after its deadline.
    """

    def __init__(self) -> None:
        self._parent: Context | None = None
        self._linked = False
        self._key: Any = _NO_KEY
        self._value: Any = None
        self._lock = threading.Lock()
        self._done = threading.Event()
        self._err: BaseException | None = None
        self._children: set[Context] = set()
        self._callbacks: list[Callable[[], None]] = []
        self._deadline: float | None = None
        self._timer: threading.Timer | None = None

    def _derive(self, linked: bool = True) -> Context:
        child = Context()
        child._parent = self
        child._linked = linked
        if linked:
            self._attach(child)
        return child

    def _attach(self, child: Context) -> None:
        self._check_deadline()
        with self._lock:
            err = self._err
            if err is None:
                self._children.add(child)
                return
        child._finish(err)

    def _detach_child(self, child: Context) -> None:
        with self._lock:
            self._children.discard(child)

    def with_value(self, key: Any, value: Any) -> Context:
        """Derive a context carrying ``value`` under ``key``."""
        child = self._derive()
        child._key = key
        child._value = value
        return child

    def with_cancel(self) -> Context:
        """Derive a context that can be cancelled on its own."""
        return self._derive()

    def with_timeout(self, timeout: float) -> Context:
        """Derive a context that expires after ``timeout`` seconds."""
        child = self._derive()
        if timeout <= 0:
            child._expire()
            return child
        child._deadline = time.monotonic() + timeout
        timer = threading.Timer(timeout, child._expire)
        timer.daemon = True
        with child._lock:
            if child._err is not None:
                return child
            child._timer = timer
        timer.start()
        return child

    def cancel(self) -> None:
        """Cancel this context and all contexts derived from it."""
        self._finish(CancelledError("context canceled"))

    def value(self, key: Any) -> Any:
        """Look up ``key`` in this context and its ancestors."""
        ctx: Context | None = self
        while ctx is not None:
            if ctx._key is not _NO_KEY and ctx._key == key:
                return ctx._value
            ctx = ctx._parent
        return None

    def err(self) -> BaseException | None:
        """The reason the context ended, or ``None`` while it is live."""
        self._check_deadline()
        return self._err

    def wait(self, timeout: float | None = None) -> bool:
        """Block until the context ends or ``timeout`` passes; return whether it ended."""
        self._check_deadline()
        return self._done.wait(timeout)

    def _expire(self) -> None:
        self._finish(TimeoutError("context deadline exceeded"))

    def _check_deadline(self) -> None:
        if self._linked and self._parent is not None:
            self._parent._check_deadline()
        if self._err is None and self._deadline is not None and time.monotonic() >= self._deadline:
            self._expire()

    def _on_done(self, fn: Callable[[], None]) -> None:
        with self._lock:
            if self._err is None:
                self._callbacks.append(fn)
                return
        fn()

    def _finish(self, err: BaseException) -> None:
        with self._lock:
            if self._err is not None:
                return
            self._err = err
            self._done.set()
            children = list(self._children)
            callbacks = self._callbacks
            self._children = set()
            self._callbacks = []
            timer, self._timer = self._timer, None
        if timer is not None:
            timer.cancel()
        if self._linked and self._parent is not None:
            self._parent._detach_child(self)
        for child in children:
            child._finish(err)
        for fn in callbacks:
            fn()


class _ContextRef:
    def __init__(self) -> None:
        self._funcs: list[Callable[[], None]] = []
        self._lock = threading.Lock()
        self.blob: Any = None

    def defer(self, fn: Callable[[], None]) -> None:
        with self._lock:
            self._funcs.append(fn)

    def done(self) -> None:
        with self._lock:
            funcs, self._funcs = self._funcs, []
            for fn in funcs:
                fn()


def with_context(ctx: Context) -> Context:
    """Return a context with deferred-cleanup support, reusing an existing one."""
    if isinstance(ctx.value(_IMAGOR_KEY), _ContextRef):
        return ctx
    ref = _ContextRef()
    ctx = ctx.with_value(_IMAGOR_KEY, ref)
    ctx._on_done(lambda: threading.Thread(target=ref.done, daemon=True).start())
    return ctx


def _must_context_ref(ctx: Context) -> _ContextRef:
    ref = ctx.value(_IMAGOR_KEY)
    if isinstance(ref, _ContextRef):
        return ref
    raise RuntimeError("not imagor context")


def context_defer(ctx: Context, fn: Callable[[], None]) -> None:
    """Register ``fn`` to run once the request context ends."""
    _must_context_ref(ctx).defer(fn)


def detach_context(ctx: Context) -> Context:
    """A context keeping the values of ``ctx`` but free of its cancellation and deadline."""
    detached = ctx._derive(linked=False)
    detached._key = _DETACH_KEY
    detached._value = True
    return detached


def is_detached(ctx: Context) -> bool:
    """Whether ``ctx`` was derived from a detached context."""
    return ctx.value(_DETACH_KEY) is True