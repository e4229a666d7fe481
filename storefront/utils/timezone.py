"""
storefront/utils/timezone.py — UTC timestamp helpers
Log file names, log entry timestamps and stats cutoffs are all UTC.
"""
from __future__ import annotations

from datetime import datetime, timedelta

import pytz

UTC = pytz.utc


def utc_now() -> datetime:
    """Return current UTC datetime (timezone-aware)."""
    return datetime.now(UTC)


def ensure_utc(dt: datetime) -> datetime:
    """Treat naive datetimes as UTC; convert aware ones."""
    if dt.tzinfo is None:
        return UTC.localize(dt)
    return dt.astimezone(UTC)


def iso_utc(dt: datetime | None = None) -> str:
    """ISO-8601 with millisecond precision and a Z suffix."""
    dt = ensure_utc(dt or utc_now())
    return dt.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def start_of_day(dt: datetime | None = None) -> datetime:
    dt = ensure_utc(dt or utc_now())
    return dt.replace(hour=0, minute=0, second=0, microsecond=0)


def days_ago(days: int, dt: datetime | None = None) -> datetime:
    return ensure_utc(dt or utc_now()) - timedelta(days=days)
