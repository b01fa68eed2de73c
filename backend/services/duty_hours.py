"""
Duty hours calculation and the clock the monitor reads "now" from.

calculate_duty_hours() is pure: the caller always passes the instant to
measure against. Threshold comparisons use the unrounded value; only
snapshots and API output go through round_hours().
"""

from datetime import datetime, timedelta, timezone
from typing import Optional

MS_PER_HOUR = 3_600_000


def as_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """Treat naive datetimes (SQLite round-trips) as UTC."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def calculate_duty_hours(sign_on_time: datetime, as_of: datetime) -> float:
    """Elapsed hours from sign-on to as_of, never negative."""
    elapsed_ms = (as_utc(as_of) - as_utc(sign_on_time)) / timedelta(milliseconds=1)
    return max(0.0, elapsed_ms) / MS_PER_HOUR


def round_hours(hours: float) -> float:
    return round(hours, 2)


class SystemClock:
    """Wall clock, UTC."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class FixedClock:
    """Clock pinned to an instant; advance() moves it forward. Used by tests and replays."""

    def __init__(self, instant: datetime):
        self.instant = as_utc(instant)

    def now(self) -> datetime:
        return self.instant

    def advance(self, **kwargs) -> datetime:
        self.instant = self.instant + timedelta(**kwargs)
        return self.instant
