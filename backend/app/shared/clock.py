"""
Time helpers.

All timestamps are stored as naive UTC datetimes (SQLite has no timezone
support), so everything crossing into the database goes through here.
"""

from datetime import datetime, timezone


def utcnow() -> datetime:
    """Current time as naive UTC."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_naive_utc(value: datetime) -> datetime:
    """Convert an aware datetime to naive UTC; naive values are assumed UTC."""
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)
