"""Date and time utilities.

Every timestamp this service persists or compares is a UTC-aware datetime.
"""

from __future__ import annotations

from datetime import datetime, timezone


def now_utc() -> datetime:
    """Get current time as UTC-aware datetime."""
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Return ``value`` as UTC-aware; naive values are taken to already be UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)
