from __future__ import annotations

from datetime import datetime, timezone
from typing import Protocol

UTC = timezone.utc

SECONDS_PER_DAY = 86_400.0


def utc_now() -> datetime:
    """Return a tz-aware UTC timestamp."""
    return datetime.now(UTC)


def is_tz_aware(value: datetime) -> bool:
    """True if a datetime is timezone-aware (has a non-None UTC offset)."""
    return value.tzinfo is not None and value.utcoffset() is not None


def coerce_utc(value: datetime) -> datetime:
    """Coerce any datetime to tz-aware UTC.

    Stores that drop tz info (SQLite) hand back naive values; everything the
    engine writes is UTC, so reading them back as UTC is lossless.
    """
    if is_tz_aware(value):
        return value.astimezone(UTC)
    return value.replace(tzinfo=UTC)


def coerce_utc_optional(value: datetime | None) -> datetime | None:
    return coerce_utc(value) if value is not None else None


def isoformat_z(value: datetime) -> str:
    """RFC3339-ish UTC string with a `Z` suffix."""
    dt = coerce_utc(value)
    return dt.isoformat().replace("+00:00", "Z")


def age_in_days(value: datetime, *, now: datetime) -> float:
    """Days elapsed between `value` and `now`, floored at zero."""
    delta = coerce_utc(now) - coerce_utc(value)
    return max(0.0, delta.total_seconds() / SECONDS_PER_DAY)


class Clock(Protocol):
    def now(self) -> datetime:
        ...


class SystemClock:
    """Wall clock. Components take a Clock so tests can pin time."""

    def now(self) -> datetime:
        return utc_now()
