"""Datetime conversion utilities."""

import time
from datetime import UTC, datetime


def now_ms() -> int:
    """Current wall-clock time as epoch milliseconds."""
    return int(time.time() * 1000)


def ms_to_datetime(ts: int | float | None) -> datetime | None:
    """Convert epoch milliseconds to an aware UTC datetime, or None."""
    if ts is None:
        return None
    return datetime.fromtimestamp(ts / 1000, tz=UTC)


def datetime_to_iso(value: datetime | None) -> str | None:
    """Convert a datetime to an ISO-8601 string, or None."""
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.astimezone(UTC).isoformat()
