"""
Timezone-aware datetime utilities for the field-service portal.

All functions return timezone-aware datetime objects in UTC. Values coming
back from SQLite are naive, so anything read from the store goes through
ensure_utc() before it is compared or formatted.
"""

from datetime import datetime, date, timezone, timedelta
from typing import Optional, Union
import pytz


def utc_now() -> datetime:
    """
    Get the current UTC time as a timezone-aware datetime object.

    Returns:
        datetime: Current UTC time with timezone information
    """
    return datetime.now(timezone.utc)


def ensure_utc(dt: datetime) -> datetime:
    """
    Ensure a datetime object is timezone-aware and in UTC.

    If the datetime is naive (no timezone), it assumes UTC.
    If the datetime has a different timezone, it converts to UTC.

    Args:
        dt: Datetime object (may be naive or timezone-aware)

    Returns:
        datetime: Timezone-aware datetime in UTC
    """
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def utc_to_local(dt: datetime, local_tz: str = 'America/New_York') -> datetime:
    """
    Convert a UTC datetime to a local timezone.

    Args:
        dt: UTC datetime
        local_tz: Target timezone name (default: America/New_York)

    Returns:
        datetime: Datetime in the specified local timezone
    """
    return ensure_utc(dt).astimezone(pytz.timezone(local_tz))


def parse_utc_iso(value: Union[str, datetime, None]) -> Optional[datetime]:
    """
    Parse an ISO 8601 string to a timezone-aware UTC datetime.

    Accepts a trailing 'Z' and passes datetimes through ensure_utc().

    Args:
        value: ISO 8601 string, datetime or None

    Returns:
        datetime in UTC, or None when value is empty

    Raises:
        ValueError: If the string is not a valid ISO 8601 timestamp
    """
    if value is None or value == '':
        return None
    if isinstance(value, datetime):
        return ensure_utc(value)
    if not isinstance(value, str):
        raise ValueError(f"Expected an ISO 8601 string, got {type(value).__name__}")
    text = value.strip()
    if text.endswith('Z'):
        text = text[:-1] + '+00:00'
    return ensure_utc(datetime.fromisoformat(text))


def to_iso_date(dt: datetime) -> str:
    """Truncate a timestamp to its calendar day (UTC) as an ISO date string."""
    return ensure_utc(dt).date().isoformat()


def day_bounds(day: date) -> tuple[datetime, datetime]:
    """Return the [start, end) UTC window covering a calendar day."""
    start = datetime(day.year, day.month, day.day, tzinfo=timezone.utc)
    return start, start + timedelta(days=1)


def days_between(start: datetime, end: datetime) -> list[str]:
    """
    List every calendar day touched by the window [start, end).

    Args:
        start: Window start
        end: Window end (exclusive)

    Returns:
        ISO date strings in ascending order
    """
    first = ensure_utc(start).date()
    # an event ending exactly at midnight does not occupy the next day
    last = (ensure_utc(end) - timedelta(microseconds=1)).date()
    days = []
    current = first
    while current <= last:
        days.append(current.isoformat())
        current += timedelta(days=1)
    return days


def format_ical_utc(dt: datetime) -> str:
    """Format a datetime in iCalendar UTC basic format (20250101T120000Z)."""
    return ensure_utc(dt).strftime('%Y%m%dT%H%M%SZ')
