"""
Input Normalization Utilities
=============================

Single source of truth for normalizing scraped values.
Dates, times and scalar config values are parsed here, nowhere else.

Usage:
    from utils.normalize import to_date, extract_time, time_to_minutes

    event_date = to_date(record.get("date"))
    start = extract_time("2024-05-01T23:00:00Z")   # '23:00:00'
    minutes = time_to_minutes(start)               # 1380
"""

import re
from datetime import date, datetime, time, timedelta
from typing import Any, Optional, Tuple, Union

from dateutil import parser as date_parser

_TIME_RE = re.compile(r"^(\d{1,2}):(\d{2})(?::(\d{2}))?")


class ValidationError(ValueError):
    """Raised when input cannot be normalized to expected type."""

    def __init__(self, message: str, field: str = None, received_value=None):
        super().__init__(message)
        self.field = field
        self.received_value = received_value


def to_int(value, *, default: Optional[int] = None, field: str = None) -> Optional[int]:
    if value is None or value == "":
        return default
    try:
        return int(value)
    except (ValueError, TypeError):
        raise ValidationError(
            f"Expected int, got {type(value).__name__}: {value!r}",
            field=field,
            received_value=value
        )


def to_float(value, *, default: Optional[float] = None, field: str = None) -> Optional[float]:
    """
    Convert string to float, with explicit None handling.

    Raises:
        ValidationError: If value cannot be converted to float
    """
    if value is None or value == "":
        return default
    try:
        return float(value)
    except (ValueError, TypeError):
        raise ValidationError(
            f"Expected float, got {type(value).__name__}: {value!r}",
            field=field,
            received_value=value
        )


def coordinate_pair(latitude, longitude) -> Optional[Tuple[float, float]]:
    """
    (latitude, longitude) when both axes are known, else None.

    Zero on either axis is a placeholder some sources send for "unknown".

    Raises:
        ValidationError: If either value is not a number
    """
    lat = to_float(latitude, field='latitude')
    lon = to_float(longitude, field='longitude')
    if not lat or not lon:
        return None
    return lat, lon


def to_bool(value, *, default: bool = False, field: str = None) -> bool:
    """
    Convert string to bool.

    Accepts (case-insensitive):
        True: 'true', '1', 'yes', 'on'
        False: 'false', '0', 'no', 'off'
    """
    if value is None or value == "":
        return default
    if isinstance(value, bool):
        return value
    lower = str(value).lower()
    if lower in ("true", "1", "yes", "on"):
        return True
    if lower in ("false", "0", "no", "off"):
        return False
    raise ValidationError(
        f"Expected bool, got: {value!r}",
        field=field,
        received_value=value
    )


def to_str(value, *, default: Optional[str] = None) -> Optional[str]:
    """Strip a string; whitespace-only counts as empty."""
    if value is None:
        return default
    result = str(value).strip()
    return result if result else default


def to_date(
    value: Optional[Union[str, date]],
    *,
    default: Optional[date] = None,
    field: str = None
) -> Optional[date]:
    """
    Convert a scraped date value to a date object.

    Accepts formats:
        - YYYY-MM-DD
        - Any ISO 8601 datetime (the date part is kept)
        - Already a date / datetime object

    Raises:
        ValidationError: If value cannot be parsed as date
    """
    if value is None or value == "":
        return default
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        text = str(value).strip()
        if len(text) == 10:
            return datetime.strptime(text, "%Y-%m-%d").date()
        return date_parser.isoparse(text).date()
    except (ValueError, TypeError, OverflowError):
        raise ValidationError(
            f"Expected date (YYYY-MM-DD), got {type(value).__name__}: {value!r}",
            field=field,
            received_value=value
        )


def date_key(value) -> Optional[str]:
    """YYYY-MM-DD form of a date-ish value, for comparison only."""
    if value is None or value == "":
        return None
    try:
        parsed = to_date(value)
    except ValidationError:
        return str(value)[:10]
    return parsed.isoformat() if parsed else None


def extract_time(value: Any) -> Optional[str]:
    """
    Normalize a time-of-day to 'HH:MM:SS'.

    Accepts 'HH:MM', 'HH:MM:SS', time/datetime objects and ISO datetimes
    such as '2024-05-01T23:00:00Z'. Returns None when nothing usable is found.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.strftime("%H:%M:%S")
    if isinstance(value, time):
        return value.strftime("%H:%M:%S")

    text = str(value).strip()
    if "T" in text:
        try:
            return date_parser.isoparse(text).strftime("%H:%M:%S")
        except (ValueError, OverflowError):
            text = text.split("T", 1)[1]

    match = _TIME_RE.match(text)
    if not match:
        return None
    hours, minutes = int(match.group(1)), int(match.group(2))
    seconds = int(match.group(3) or 0)
    if hours > 23 or minutes > 59 or seconds > 59:
        return None
    return f"{hours:02d}:{minutes:02d}:{seconds:02d}"


def time_key(value) -> Optional[str]:
    """HH:MM form of a time-ish value, for comparison only."""
    normalized = extract_time(value)
    return normalized[:5] if normalized else None


def time_to_minutes(value) -> Optional[int]:
    """Minutes from midnight, or None if the value has no usable time."""
    normalized = extract_time(value)
    if not normalized:
        return None
    hours, minutes = normalized.split(":")[:2]
    return int(hours) * 60 + int(minutes)


def combine_date_time(day: Optional[date], value) -> Optional[datetime]:
    """Attach an 'HH:MM[:SS]' time to a calendar date."""
    normalized = extract_time(value)
    if day is None or not normalized:
        return None
    return datetime.combine(day, time.fromisoformat(normalized))


def event_window(day: Optional[date], start, end):
    """
    Start and end timestamps for an event on one listed date.

    An end time earlier than the start time belongs to the following day.
    """
    start_at = combine_date_time(day, start)
    end_at = combine_date_time(day, end)
    if start_at and end_at and end_at < start_at:
        end_at = end_at + timedelta(days=1)
    return start_at, end_at
