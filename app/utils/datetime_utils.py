"""
Common date/time helpers.

Storage: all timestamps are stored in UTC.
Refill scheduling works on calendar dates (`date`), not timestamps.
"""

from datetime import date, datetime, timedelta, timezone


def as_utc(dt: datetime) -> datetime:
    """
    Convert dt to tz-aware UTC.
    If dt is naive, we treat it as UTC (SQLite hands back naive values).
    """
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def utc_now() -> datetime:
    """
    Get current UTC datetime.
    """
    return datetime.now(timezone.utc)


def utc_today() -> date:
    return utc_now().date()


def add_days(day: date, days: int) -> date:
    return day + timedelta(days=days)
