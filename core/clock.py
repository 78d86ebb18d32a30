"""
core/clock.py -- Injectable time source and timestamp encoding.

Every expiry comparison in Warden goes through a Clock passed in at
construction time. SQL queries receive "now" as a bound parameter instead of
calling the database's NOW(), so tests can move time deterministically.

Timestamps are persisted as fixed-width UTC ISO-8601 strings
(to_iso() always emits microseconds and +00:00), which makes lexicographic
comparison in SQL identical to chronological comparison.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Protocol


class Clock(Protocol):
    def now(self) -> datetime: ...


class SystemClock:
    """Wall-clock UTC time."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


def to_iso(dt: datetime) -> str:
    """Encode an aware (or UTC-naive) datetime as a fixed-width UTC string."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat(timespec="microseconds")


def from_iso(value: str | None) -> datetime | None:
    if not value:
        return None
    dt = datetime.fromisoformat(value)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt
