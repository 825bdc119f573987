import time
from concurrent.futures import CancelledError

import pytest

from imagor.context import (
    Context,
    context_defer,
    detach_context,
    is_detached,
    with_context,
)


def wait_for(predicate, limit=1.0):
    end = time.monotonic() + limit
    while time.monotonic() < end:
        if predicate():
            return True
        time.sleep(0.001)
    return predicate()


def test_defer():
    called = []
    base = Context().with_cancel()

    def should_not_call():
        called.append("bad")

    with pytest.raises(RuntimeError):
        context_defer(base, should_not_call)

    ctx = with_context(base)
    context_defer(ctx, lambda: called.append(1))
    context_defer(ctx, lambda: called.append(1))
    base.cancel()
    assert wait_for(lambda: len(called) == 2)
    time.sleep(0.01)
    context_defer(ctx, lambda: called.append(1))
    time.sleep(0.01)
    assert called == [1, 1]


def test_with_context_reuses_existing():
    ctx = with_context(Context())
    assert with_context(ctx) is ctx


def test_detach_context():
    ctx = Context().with_timeout(1e-9)
    ctx = ctx.with_value("foo", "bar")
    assert not is_detached(ctx)
    time.sleep(0.001)
    assert isinstance(ctx.err(), TimeoutError)
    ctx = detach_context(ctx)
    assert is_detached(ctx)
    assert ctx.value("foo") == "bar"
    assert ctx.err() is None
    ctx = ctx.with_timeout(0.005)
    assert ctx.err() is None
    assert is_detached(ctx)
    time.sleep(0.01)
    assert isinstance(ctx.err(), TimeoutError)


def test_cancel_propagates_to_children():
    parent = Context().with_cancel()
    child = parent.with_value("k", "v").with_cancel()
    assert child.err() is None
    parent.cancel()
    assert child.wait(1.0) is True
    assert isinstance(child.err(), CancelledError)


def test_child_cancel_leaves_parent():
    parent = Context().with_cancel()
    child = parent.with_cancel()
    child.cancel()
    assert isinstance(child.err(), CancelledError)
    assert parent.err() is None


def test_derive_from_done_context_is_done():
    parent = Context().with_cancel()
    parent.cancel()
    child = parent.with_value("a", 1)
    assert isinstance(child.err(), CancelledError)
    assert child.value("a") == 1


def test_wait_times_out_when_live():
    assert Context().wait(0.01) is False


def test_timeout_fires_without_polling():
    ctx = Context().with_timeout(0.01)
    assert ctx.wait(1.0) is True
    assert isinstance(ctx.err(), TimeoutError)


def test_value_missing():
    assert Context().with_value("a", 1).value("b") is None