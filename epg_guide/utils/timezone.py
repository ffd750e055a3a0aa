"""
Date and Time utilities

This module handles all date/time conversions used by the EPG pipeline:
XMLTV timestamp parsing and the ISO8601 UTC representation used for storage.
Centralizes all date parsing logic to maintain consistency across the application.
"""
from datetime import datetime, timedelta, timezone
import logging
import re


logger = logging.getLogger(__name__)

_XMLTV_TIME_RE = re.compile(r"^(\d{14})", re.ASCII)
_XMLTV_OFFSET_RE = re.compile(r"^([+-])(\d{2}):?(\d{2})$", re.ASCII)


class DateFormatError(ValueError):
    """Raised when date format is invalid"""
    pass


def utc_now() -> datetime:
    """Current time as a timezone-aware UTC datetime"""
    return datetime.now(timezone.utc)


def parse_xmltv_time(time_str: str | None, *, honor_offset: bool = True) -> datetime | None:
    """
    Parse an XMLTV timestamp into a UTC datetime

    The first 14 characters must be YYYYMMDDHHMMSS. An optional offset suffix
    ('+0100', '-0600') follows after whitespace. Without a suffix, or when
    honor_offset is False, the wall-clock time is read in the host's local
    timezone.

    Args:
        time_str: XMLTV time like '20080715003000 -0600'
        honor_offset: Apply the declared offset instead of local time

    Returns:
        Timezone-aware datetime in UTC, or None when the value is malformed
    """
    if not time_str:
        return None

    value = time_str.strip()
    match = _XMLTV_TIME_RE.match(value)
    if not match:
        return None

    try:
        wall_clock = datetime.strptime(match.group(1), "%Y%m%d%H%M%S")
    except ValueError:
        return None

    offset = _parse_offset(value[14:].strip()) if honor_offset else None
    try:
        if offset is None:
            # Naive datetimes are interpreted as local time by astimezone()
            return wall_clock.astimezone(timezone.utc)
        return wall_clock.replace(tzinfo=timezone(offset)).astimezone(timezone.utc)
    except (OverflowError, ValueError):
        # Wall clock within hours of year 1 or 9999 shifts out of range
        return None


def _parse_offset(offset_str: str) -> timedelta | None:
    """Parse '+HHMM' / '-HH:MM' into a timedelta, None if absent or invalid"""
    if not offset_str:
        return None

    match = _XMLTV_OFFSET_RE.match(offset_str)
    if not match:
        logger.debug("Ignoring unrecognized XMLTV timezone offset: %r", offset_str)
        return None

    sign, hours, minutes = match.groups()
    if int(hours) > 23 or int(minutes) > 59:
        return None
    delta = timedelta(hours=int(hours), minutes=int(minutes))
    return -delta if sign == "-" else delta


def _normalize_iso8601_string(date_str: str) -> str:
    """Normalize ISO8601 string by replacing 'Z' with '+00:00'"""
    return date_str.replace('Z', '+00:00') if date_str.endswith('Z') else date_str


def parse_iso8601_to_utc(date_str: str) -> datetime:
    """
    Parse ISO8601 date string and convert to UTC datetime

    Args:
        date_str: ISO8601 datetime string (e.g., '2025-10-09T00:00:00Z' or '2025-10-09T00:00:00+01:00')

    Returns:
        Timezone-aware datetime in UTC

    Raises:
        DateFormatError: If the date string format is invalid
    """
    try:
        normalized = _normalize_iso8601_string(date_str)
        dt = datetime.fromisoformat(normalized)
        if dt.tzinfo is None:
            return dt.replace(tzinfo=timezone.utc)
        return dt.astimezone(timezone.utc)
    except (ValueError, AttributeError, TypeError) as e:
        raise DateFormatError(f"Invalid ISO8601 datetime format: '{date_str}'") from e


def to_utc_iso(value: datetime | None) -> str | None:
    """
    Format a datetime as a fixed-width ISO8601 UTC string

    Seconds precision keeps every stored value the same width, so string
    comparison in SQL matches chronological order.
    """
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="seconds")


def from_utc_iso(value: str | None) -> datetime | None:
    """Inverse of to_utc_iso; tolerates None"""
    if value is None:
        return None
    return parse_iso8601_to_utc(value)
