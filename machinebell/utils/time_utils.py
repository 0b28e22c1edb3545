"""Time and timezone utilities."""

from datetime import datetime, timedelta
from zoneinfo import ZoneInfo

from dateutil.parser import isoparse


def utc_now() -> datetime:
    """Current wall clock time in UTC."""
    return datetime.now(ZoneInfo("UTC"))


def to_utc(dt: datetime, tz: str) -> datetime:
    """Convert a timezone-aware datetime to UTC."""
    if dt.tzinfo is None:
        # Assume it's in the given timezone
        dt = dt.replace(tzinfo=ZoneInfo(tz))
    return dt.astimezone(ZoneInfo("UTC"))


def from_utc(dt: datetime, tz: str) -> datetime:
    """Convert a UTC datetime to the given timezone."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=ZoneInfo("UTC"))
    return dt.astimezone(ZoneInfo(tz))


def parse_timestamp(value: str) -> datetime:
    """Parse an ISO-8601 timestamp as stored in the data files.

    Accepts the JavaScript style ``2024-05-01T10:00:00.000Z`` as well as
    Python's ``isoformat()`` output. Naive values are taken as UTC.

    Raises:
        ValueError: if the value is not an ISO-8601 timestamp
    """
    return to_utc(isoparse(value), "UTC")


def format_timestamp(dt: datetime) -> str:
    """Format a datetime for the data files (ISO-8601, UTC)."""
    return to_utc(dt, "UTC").isoformat()


def seconds_until(target: datetime, now: datetime) -> float:
    """Seconds from now until target, negative if target has passed."""
    return (target - now).total_seconds()


def minutes(value: int) -> timedelta:
    return timedelta(minutes=value)


def format_clock_time(dt: datetime, tz: str) -> str:
    """Format the local time of day, e.g. ``14:05``."""
    return from_utc(dt, tz).strftime("%H:%M")


def format_local_datetime(dt: datetime, tz: str) -> str:
    """Format a local date and time, e.g. ``01.05.2026 14:05``."""
    return from_utc(dt, tz).strftime("%d.%m.%Y %H:%M")


def whole_days_between(start: datetime, end: datetime) -> int:
    """Number of days between two datetimes, rounded."""
    return round(abs((end - start).total_seconds()) / 86400)
