"""
Date and Time utilities

This module handles all date/time conversions and parsing.
Centralizes all date parsing logic to maintain consistency across the application.
"""
from datetime import datetime, timedelta, timezone
import logging
import re

from app.errors import TimeParseFailure

logger = logging.getLogger(__name__)

# YYYYMMDDHHMMSS optionally followed by a +HHMM / -HHMM offset
_XMLTV_TIME_RE = re.compile(r"^(\d{14})(?:\s*([+-])(\d{2})(\d{2}))?$")


class DateFormatError(ValueError):
    """Raised when date format is invalid"""
    pass


def utc_now() -> datetime:
    """Current instant as a timezone-aware UTC datetime"""
    return datetime.now(timezone.utc)


def _normalize_iso8601_string(date_str: str) -> str:
    """Normalize ISO8601 string by replacing 'Z' with '+00:00'

    Args:
        date_str: ISO8601 datetime string

    Returns:
        Normalized string with explicit timezone offset
    """
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
    except (ValueError, AttributeError) as e:
        raise DateFormatError(f"Invalid ISO8601 datetime format: '{date_str}'") from e


def parse_xmltv_time(time_str: str) -> datetime:
    """
    Convert an XMLTV timestamp to a UTC datetime

    The digits are read positionally as wall-clock time in the stated offset
    (UTC when no offset is given), then shifted to UTC by subtracting the offset.

    Args:
        time_str: XMLTV time like '20080715003000 -0600' or '20080715003000'

    Returns:
        Timezone-aware datetime in UTC

    Raises:
        TimeParseFailure: If the value does not match the XMLTV time format
    """
    match = _XMLTV_TIME_RE.match(time_str.strip()) if time_str else None
    if match is None:
        raise TimeParseFailure(f"Invalid XMLTV time: '{time_str}'")

    digits, tz_sign, tz_hours, tz_mins = match.groups()
    try:
        dt = datetime(
            int(digits[0:4]),
            int(digits[4:6]),
            int(digits[6:8]),
            int(digits[8:10]),
            int(digits[10:12]),
            int(digits[12:14]),
            tzinfo=timezone.utc,
        )
    except ValueError as exc:
        raise TimeParseFailure(f"Invalid XMLTV time: '{time_str}' ({exc})") from exc

    if tz_sign is None:
        return dt

    offset_minutes = int(tz_hours) * 60 + int(tz_mins)
    if tz_sign == '-':
        offset_minutes = -offset_minutes

    try:
        return dt - timedelta(minutes=offset_minutes)
    except OverflowError as exc:
        raise TimeParseFailure(f"Invalid XMLTV time: '{time_str}' ({exc})") from exc
