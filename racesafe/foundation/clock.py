"""UTC time helpers.

Race start times, token expiries and alert timestamps are all compared
against each other, so every datetime in racesafe is UTC-aware.  Patch
``utc_now`` here to freeze time in tests.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """Treat naive datetimes from the data API as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def days_before(days: float, *, now: datetime | None = None) -> datetime:
    """Start of a look-back window ending at ``now``."""
    return (now or utc_now()) - timedelta(days=days)


def to_api_minute(value: datetime) -> str:
    """Minute-resolution ISO stamp accepted by the search endpoints."""
    return ensure_utc(value).strftime("%Y-%m-%dT%H:%MZ")
