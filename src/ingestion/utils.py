"""
Normalization and argument helpers for yt-dlp payloads.

yt-dlp emits loosely typed JSON: numbers arrive as strings, optional fields are
missing or blank, URLs carry tab suffixes. Every helper here is total and
degrades to None / NaN / False instead of raising.
"""

import math
import re
from datetime import datetime, timezone
from typing import Any, Optional
from urllib.parse import urlsplit, urlunsplit

RawVideo = dict[str, Any]

WATCH_URL_TEMPLATE = "https://www.youtube.com/watch?v={video_id}"

_CHANNEL_TAB_SUFFIX = re.compile(r"(/(?:videos|shorts|streams|featured|community))/?$", re.IGNORECASE)
_REPEATED_SLASHES = re.compile(r"/{2,}")
_HANDLE = re.compile(r"@[^/]+")
_SHELL_SAFE = re.compile(r"^[\w@%+=:,./-]+$", re.IGNORECASE)
_ARG_TOKEN = re.compile(r"\"([^\"]*)\"|'([^']*)'|(\S+)")

TRUTHY_VALUES = frozenset({"1", "true", "yes", "on"})

# Largest value the INTEGER columns accept
MAX_STORED_INTEGER = 2**31 - 1


def _is_number(value: Any) -> bool:
    # bool is an int subclass, but True is not a duration
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def parse_positive_int(raw: Optional[str]) -> Optional[int]:
    """Floor a positive finite number; None for empty, zero, negative or junk."""
    if not raw:
        return None
    try:
        value = float(raw)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(value) or value <= 0:
        return None
    return math.floor(value)


def split_args(raw: Optional[str]) -> list[str]:
    """Split an argument string on whitespace, keeping quoted runs together."""
    if not raw:
        return []
    result = []
    for double_quoted, single_quoted, bare in _ARG_TOKEN.findall(raw):
        # findall yields "" for groups that did not take part in the match
        result.append(double_quoted or single_quoted or bare)
    return result


def is_truthy(raw: Optional[str]) -> bool:
    if not raw:
        return False
    return raw.lower() in TRUTHY_VALUES


def shell_quote(value: str) -> str:
    """Quote a single argument for a POSIX shell."""
    if _SHELL_SAFE.match(value):
        return value
    return "'" + value.replace("'", "'\\''") + "'"


def shell_join(executable: str, args: list[str]) -> str:
    return " ".join(shell_quote(part) for part in [executable, *args])


def to_non_empty_string(value: Any) -> Optional[str]:
    if not isinstance(value, str):
        return None
    trimmed = value.strip()
    return trimmed or None


def to_optional_string(value: Any) -> Optional[str]:
    return to_non_empty_string(value)


def to_integer_or_null(value: Any) -> Optional[int]:
    """Truncate a non-negative number or numeric string; None otherwise.

    Values past MAX_STORED_INTEGER are treated as garbage and also give None.
    """
    if isinstance(value, str):
        try:
            value = float(value)
        except ValueError:
            return None
    elif not _is_number(value):
        return None

    try:
        if not math.isfinite(value) or value < 0:
            return None
    except OverflowError:
        return None

    truncated = int(value)
    return truncated if truncated <= MAX_STORED_INTEGER else None


def parse_upload_date(upload_date: str) -> float:
    """
    Parse a YYYYMMDD string into epoch seconds at UTC midnight.

    Months must be 1-12 and days 1-31. Days past the end of the month roll
    over into the next one ("20240231" is 2 March 2024).

    Returns:
        float: Epoch seconds, or NaN when the string is malformed
    """
    if not isinstance(upload_date, str) or len(upload_date) != 8:
        return math.nan

    year_part, month_part, day_part = upload_date[:4], upload_date[4:6], upload_date[6:8]
    if not all(part.isascii() and part.isdigit() for part in (year_part, month_part, day_part)):
        return math.nan

    year, month, day = int(year_part), int(month_part), int(day_part)
    if year < 1 or not 1 <= month <= 12 or not 1 <= day <= 31:
        return math.nan

    first_of_month = datetime(year, month, 1, tzinfo=timezone.utc)
    return first_of_month.timestamp() + (day - 1) * 86400


def get_uploaded_at_date(video: RawVideo) -> Optional[datetime]:
    """Resolve the upload instant from timestamp, else from upload_date."""
    timestamp = video.get("timestamp")
    if _is_number(timestamp):
        try:
            if math.isfinite(timestamp) and timestamp > 0:
                return datetime.fromtimestamp(timestamp, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            pass

    upload_date = video.get("upload_date")
    if isinstance(upload_date, str):
        parsed = parse_upload_date(upload_date)
        if not math.isnan(parsed) and parsed > 0:
            return datetime.fromtimestamp(parsed, tz=timezone.utc)

    return None


def resolve_video_url(video: RawVideo, fallback_id: str) -> str:
    return (
        to_non_empty_string(video.get("webpage_url"))
        or to_non_empty_string(video.get("url"))
        or WATCH_URL_TEMPLATE.format(video_id=fallback_id)
    )


def is_live_video(video: RawVideo) -> bool:
    is_live = video.get("is_live")
    if isinstance(is_live, bool):
        return is_live

    live_status = video.get("live_status")
    if isinstance(live_status, str):
        return live_status.lower() in ("is_live", "live")

    return False


def normalize_channel_url(raw_url: str) -> str:
    """
    Canonical form of a channel URL.

    Drops query and fragment, strips a trailing /videos, /shorts, /streams,
    /featured or /community tab, collapses repeated slashes and guarantees a
    trailing slash. Input that does not parse as an absolute URL comes back
    trimmed.
    """
    trimmed = raw_url.strip()
    if not trimmed:
        return raw_url

    try:
        parts = urlsplit(trimmed)
    except ValueError:
        return trimmed
    if not parts.scheme or not parts.netloc:
        return trimmed

    path = _REPEATED_SLASHES.sub("/", parts.path)
    while True:
        stripped = _REPEATED_SLASHES.sub("/", _CHANNEL_TAB_SUFFIX.sub("/", path))
        if stripped == path:
            break
        path = stripped
    if not path.endswith("/"):
        path = f"{path}/"

    return urlunsplit((parts.scheme.lower(), parts.netloc.lower(), path, "", ""))


def extract_handle_from_url(url: str) -> Optional[str]:
    """Pull an @handle out of a URL path, or out of arbitrary text."""
    try:
        parts = urlsplit(url)
    except ValueError:
        parts = None

    if parts is not None and parts.scheme and parts.netloc:
        match = _HANDLE.search(parts.path)
        return match.group(0) if match else None

    match = _HANDLE.search(url)
    return match.group(0) if match else None
