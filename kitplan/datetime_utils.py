"""
DateTime utility functions for the application.

Shift times are wall-clock "HH:MM" strings; all scheduling arithmetic is done
on datetimes carrying whatever tzinfo the caller passed in (naive plant-local
time in practice).
"""
from datetime import date, datetime, time, timedelta
from typing import Optional

from kitplan.errors import ValidationError

MINUTES_PER_DAY = 24 * 60


def parse_time_of_day(value: str) -> int:
    """
    Convert a time string (e.g., "07:00") to minutes since midnight.

    Args:
        value: 24-hour "HH:MM" string

    Returns:
        int: Minutes since midnight (0 to 1439)

    Raises:
        ValidationError: If the string is not a valid 24-hour time
    """
    if not isinstance(value, str):
        raise ValidationError(f"Time of day must be an 'HH:MM' string, got {value!r}")
    try:
        hours_str, minutes_str = value.strip().split(':')
        hours, minutes = int(hours_str), int(minutes_str)
    except ValueError:
        raise ValidationError(f"Time of day must be in 'HH:MM' format, got {value!r}")

    if not (0 <= hours < 24 and 0 <= minutes < 60):
        raise ValidationError(f"Time of day out of range: {value!r}")
    return hours * 60 + minutes


def minutes_to_time_string(minutes: int) -> str:
    """Convert minutes since midnight to a "HH:MM" string (wraps past midnight)."""
    hours = (minutes // 60) % 24
    mins = minutes % 60
    return f"{hours:02d}:{mins:02d}"


def day_start(day: date, tzinfo=None) -> datetime:
    """Midnight at the beginning of ``day``."""
    return datetime.combine(day, time(0, 0), tzinfo=tzinfo)


def combine_date_and_time(day: date, time_of_day: str, tzinfo=None) -> datetime:
    """Build the datetime for a calendar date plus an "HH:MM" wall-clock time."""
    return day_start(day, tzinfo) + timedelta(minutes=parse_time_of_day(time_of_day))


def format_duration(seconds: int) -> str:
    """
    Human-readable duration, e.g. "2h 5m 0s", "4m 10s" or "45s".
    """
    hours = seconds // 3600
    minutes = (seconds % 3600) // 60
    remaining_seconds = seconds % 60

    if hours > 0:
        return f"{hours}h {minutes}m {remaining_seconds}s"
    elif minutes > 0:
        return f"{minutes}m {remaining_seconds}s"
    return f"{remaining_seconds}s"


def to_iso(dt: Optional[datetime]) -> Optional[str]:
    """ISO-8601 string for JSON payloads, or None."""
    if dt is None:
        return None
    return dt.isoformat()
