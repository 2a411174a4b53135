"""
Datetime utility functions.
Provides replacements for deprecated datetime functions and the time-window
arithmetic shared by the participation, invite and review services.
"""

from datetime import date, datetime
from typing import Optional
import pytz


def utcnow() -> datetime:
    """
    Get current UTC datetime using pytz.UTC.

    Returns:
        Current UTC datetime with pytz timezone information
    """
    return datetime.now(pytz.UTC)


def as_utc(value: datetime) -> datetime:
    """
    Normalize a datetime to an aware UTC datetime.

    Some drivers (SQLite) hand back naive datetimes even for
    ``DateTime(timezone=True)`` columns; those are stored as UTC.
    """
    if value.tzinfo is None:
        return pytz.UTC.localize(value)
    return value.astimezone(pytz.UTC)


def hours_until(target: datetime, now: Optional[datetime] = None) -> float:
    """
    Signed number of hours from ``now`` until ``target`` (negative once passed).
    """
    now = as_utc(now) if now is not None else utcnow()
    return (as_utc(target) - now).total_seconds() / 3600


def local_date(value: datetime, tz_name: str) -> date:
    """Calendar date of ``value`` in the named timezone."""
    return as_utc(value).astimezone(pytz.timezone(tz_name)).date()
