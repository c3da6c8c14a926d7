"""Time utilities."""

from datetime import datetime, timezone


def utc_now() -> datetime:
    """Return a timezone-aware UTC timestamp."""
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Coerce a datetime to UTC, treating naive values as UTC.

    SQLite round-trips ``DateTime(timezone=True)`` columns as naive values,
    so everything read back from the store passes through here before it is
    compared with aware timestamps.
    """
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)
