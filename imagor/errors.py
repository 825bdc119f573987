"""Error conventions: status-coded errors and conversion of arbitrary exceptions."""

from __future__ import annotations

import re
from http import HTTPStatus
from typing import Any

_PREFIX = "imagor:"
_MESSAGE_RE = re.compile(rf"{_PREFIX} ([0-9]+) (.*)")


class ImagorError(Exception):
    """An error carrying an HTTP status code."""

    def __init__(self, message: str, code: int) -> None:
        super().__init__(message, code)
        self.message = message
        self.code = code

    def __str__(self) -> str:
        return f"{_PREFIX} {self.code} {self.message}"

    def __repr__(self) -> str:
        return f"ImagorError({self.message!r}, {self.code!r})"

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ImagorError):
            return NotImplemented
        return self.message == other.message and self.code == other.code

    def __hash__(self) -> int:
        return hash((self.message, self.code))

    def timeout(self) -> bool:
        """Whether the error represents a timeout."""
        return self.code in (HTTPStatus.REQUEST_TIMEOUT, HTTPStatus.GATEWAY_TIMEOUT)

    def to_dict(self) -> dict[str, Any]:
        """JSON body of the error, omitting empty fields."""
        body: dict[str, Any] = {}
        if self.message:
            body["message"] = self.message
        if self.code:
            body["status"] = self.code
        return body


class ForwardError(Exception):
    """Signals that processing params are passed on to the next processor."""

    def __init__(self, params: Any = None, path: str | None = None) -> None:
        super().__init__(params)
        self.params = params
        self.path = path if path is not None else getattr(params, "path", "") or ""

    def __str__(self) -> str:
        return f"{_PREFIX} forward {self.path}"


ERR_NOT_FOUND = ImagorError("not found", 404)
ERR_INVALID = ImagorError("invalid", 400)
ERR_METHOD_NOT_ALLOWED = ImagorError("method not allowed", 405)
ERR_SIGNATURE_MISMATCH = ImagorError("url signature mismatch", 403)
ERR_TIMEOUT = ImagorError("timeout", 408)
ERR_EXPIRED = ImagorError("expired", 410)
ERR_UNSUPPORTED_FORMAT = ImagorError("unsupported format", 406)
ERR_MAX_SIZE_EXCEEDED = ImagorError("maximum size exceeded", 400)
ERR_MAX_RESOLUTION_EXCEEDED = ImagorError("maximum resolution exceeded", 422)
ERR_TOO_MANY_REQUESTS = ImagorError("too many requests", 429)
ERR_INTERNAL = ImagorError("internal error", 500)


def new_error_from_status_code(code: int) -> ImagorError:
    """Create an error whose message is the standard reason phrase of ``code``."""
    try:
        phrase = HTTPStatus(code).phrase
    except ValueError:
        phrase = ""
    return ImagorError(phrase, code)


def _is_timeout(err: BaseException) -> bool:
    seen: set[int] = set()
    current: BaseException | None = err
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        if isinstance(current, TimeoutError):
            return True
        check = getattr(current, "timeout", None)
        if callable(check):
            try:
                if check():
                    return True
            except TypeError:
                pass
        current = current.__cause__ or current.__context__
    return False


def wrap_error(err: BaseException | None) -> ImagorError:
    """Convert any exception into an :class:`ImagorError`."""
    if err is None:
        return ERR_INTERNAL
    if isinstance(err, ImagorError):
        return err
    if isinstance(err, ForwardError):
        # a forward reaching the end means no processor supports the input
        return ERR_UNSUPPORTED_FORMAT
    if _is_timeout(err):
        return ERR_TIMEOUT
    message = str(err)
    match = _MESSAGE_RE.fullmatch(message)
    if match:
        return ImagorError(match.group(2), int(match.group(1)))
    return ImagorError(message.replace("\n", ""), 500)