"""Composition of flag-based configuration options."""

from __future__ import annotations

from typing import Any, Callable, Optional

LoggerCallback = Callable[[], tuple[Any, bool]]
AppOption = Callable[[Any], None]
ConfigOption = Callable[[Any, LoggerCallback], AppOption]


def apply_options(
    fs: Any, cb: LoggerCallback, *args: Optional[ConfigOption]
) -> tuple[list[AppOption], Any, bool]:
    """Turn config options into app options, resolving the logger last.

    Options are registered from the last to the first; each may call its
    callback to obtain ``(logger, is_debug)``, which registers the earlier
    options first. ``None`` entries are skipped. App options come back in
    the order the config options were given.
    """
    if not args:
        logger, is_debug = cb()
        return [], logger, is_debug
    *rest, last = args
    if last is None:
        return apply_options(fs, cb, *rest)

    inner: list[tuple[list[AppOption], Any, bool]] = []

    def resolve() -> tuple[Any, bool]:
        inner.append(apply_options(fs, cb, *rest))
        _, logger, is_debug = inner[-1]
        return logger, is_debug

    option = last(fs, resolve)
    if not inner:
        inner.append(apply_options(fs, cb, *rest))
    previous, logger, is_debug = inner[-1]
    return [*previous, option], logger, is_debug