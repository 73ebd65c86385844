"""Datetime normalization helpers.

Providers deliver start times both as naive UTC and as offset-aware values.
Everything is compared in UTC.
"""

from datetime import datetime, timezone


def to_utc(dt: datetime) -> datetime:
    """Convert datetime to UTC.

    Args:
        dt: Datetime (timezone-aware or naive)

    Returns:
        Datetime in UTC timezone
    """
    if dt.tzinfo is None:
        # Assume UTC if naive
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def ensure_utc(dt: datetime | None) -> datetime | None:
    """Normalize an optional datetime to UTC-aware, passing None through."""
    if dt is None:
        return None
    return to_utc(dt)


def to_naive_utc(dt: datetime) -> datetime:
    """Convert datetime to naive UTC for storage in DateTime columns."""
    return to_utc(dt).replace(tzinfo=None)
