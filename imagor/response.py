"""HTTP response helpers: cache headers, conditional requests and content disposition."""

from __future__ import annotations

import posixpath
import re
from datetime import datetime, timedelta, timezone
from typing import Any, Iterable, Mapping, MutableMapping, Optional, Tuple, Union

from .blob import Blob, Stat, get_extension

Seconds = Union[int, float, timedelta]

_DAYS = ("Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun")
_MONTHS = ("Jan", "Feb", "Mar", "Apr", "May", "Jun",
           "Jul", "Aug", "Sep", "Oct", "Nov", "Dec")
_HTTP_DATE_RE = re.compile(
    r"(?:Mon|Tue|Wed|Thu|Fri|Sat|Sun), (\d{2}) "
    r"(Jan|Feb|Mar|Apr|May|Jun|Jul|Aug|Sep|Oct|Nov|Dec) "
    r"(\d{4}) (\d{2}):(\d{2}):(\d{2}) GMT"
)
_ZERO_TIME = datetime(1, 1, 1, tzinfo=timezone.utc)


def _seconds(value: Seconds) -> float:
    if isinstance(value, timedelta):
        return value.total_seconds()
    return float(value)


def _utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _format_http_date(value: datetime) -> str:
    value = _utc(value)
    return (
        f"{_DAYS[value.weekday()]}, {value.day:02d} {_MONTHS[value.month - 1]} "
        f"{value.year:04d} {value.hour:02d}:{value.minute:02d}:{value.second:02d} GMT"
    )


def _parse_http_date(text: str) -> Optional[datetime]:
    match = _HTTP_DATE_RE.fullmatch(text)
    if not match:
        return None
    day, month, year, hour, minute, second = match.groups()
    try:
        return datetime(
            int(year), _MONTHS.index(month) + 1, int(day),
            int(hour), int(minute), int(second), tzinfo=timezone.utc,
        )
    except ValueError:
        return None


def _header(headers: Optional[Mapping[str, Any]], name: str) -> str:
    if not headers:
        return ""
    wanted = name.lower()
    for key, value in headers.items():
        if key.lower() == wanted:
            return str(value)
    return ""


def get_cache_control(ttl: Seconds, swr: Seconds) -> str:
    """Cache-Control value for a time-to-live and stale-while-revalidate, in seconds."""
    ttl_sec = _seconds(ttl)
    swr_sec = _seconds(swr)
    if ttl_sec == 0:
        return "private, no-cache, no-store, must-revalidate"
    ttl_int = int(ttl_sec)
    value = f"public, s-maxage={ttl_int}, max-age={ttl_int}, no-transform"
    if 0 < swr_sec < ttl_sec:
        value += f", stale-while-revalidate={int(swr_sec)}"
    return value


def cache_headers(
    request_headers: Optional[Mapping[str, Any]],
    ttl: Seconds,
    swr: Seconds,
    now: Optional[datetime] = None,
) -> dict[str, str]:
    """Expires and Cache-Control response headers; a no-cache request disables caching."""
    if "no-cache" in _header(request_headers, "Cache-Control"):
        ttl = 0
    if now is None:
        now = datetime.now(timezone.utc)
    expires = _utc(now) + timedelta(seconds=_seconds(ttl))
    return {
        "Expires": _format_http_date(expires),
        "Cache-Control": get_cache_control(ttl, swr),
    }


def check_stat_not_modified(
    request_headers: Optional[Mapping[str, Any]],
    response_headers: MutableMapping[str, str],
    stat: Optional[Stat],
) -> bool:
    """Set ETag and Last-Modified from ``stat``; return whether the client copy is current."""
    if stat is None or "no-cache" in _header(request_headers, "Cache-Control"):
        return False
    mtime = _utc(stat.modified_time) if stat.modified_time is not None else _ZERO_TIME
    is_zero = mtime == _ZERO_TIME
    etag_match = False
    not_modified = False
    etag = stat.etag
    if not etag and stat.size > 0 and not is_zero:
        etag = f"{int(mtime.timestamp()):x}-{int(stat.size):x}"
    if etag:
        response_headers["ETag"] = etag
        if _header(request_headers, "If-None-Match") == etag:
            etag_match = True
    if not is_zero:
        response_headers["Last-Modified"] = _format_http_date(mtime)
        ims = _parse_http_date(_header(request_headers, "If-Modified-Since"))
        if ims is not None:
            not_modified = mtime < ims
        if not not_modified:
            ius = _parse_http_date(_header(request_headers, "If-Unmodified-Since"))
            if ius is not None:
                not_modified = mtime > ius
    return etag_match or not_modified


def get_content_disposition(
    filters: Iterable[Tuple[str, str]], image: str, blob: Blob
) -> str:
    """Content-Disposition for ``(name, args)`` filters; ``attachment`` makes a download."""
    for name, args in filters:
        if name != "attachment":
            continue
        filename = args or posixpath.basename(image)
        filename = filename.replace('"', "%22")
        ext = get_extension(blob.blob_type())
        if ext and not (ext == ".jpg" and filename.endswith(".jpeg")):
            filename = filename.removesuffix(ext) + ext
        return f'attachment; filename="{filename}"'
    return "inline"