"""Time sources for the reminder core.

Every component that needs the current time takes a ``Clock`` so ticks,
timezone conversions and rate-limit windows can be driven from tests.
"""
from datetime import datetime, timedelta, timezone
from typing import Optional


class Clock:
    """Source of the current instant."""

    def now(self) -> datetime:
        """Return the current time as an aware UTC datetime."""
        raise NotImplementedError


class SystemClock(Clock):
    """Wall-clock time."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class FrozenClock(Clock):
    """Clock that only moves when told to."""

    def __init__(self, current: Optional[datetime] = None):
        self._current = ensure_utc(current or datetime.now(timezone.utc))

    def now(self) -> datetime:
        return self._current

    def set(self, current: datetime) -> None:
        self._current = ensure_utc(current)

    def advance(self, **kwargs) -> datetime:
        """Move the clock forward by ``timedelta(**kwargs)``."""
        self._current = self._current + timedelta(**kwargs)
        return self._current


def ensure_utc(value: datetime) -> datetime:
    """Normalize a datetime to aware UTC; naive values are taken as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def as_naive_utc(value: datetime) -> datetime:
    """Convert to the naive UTC form stored in DateTime columns."""
    return ensure_utc(value).replace(tzinfo=None)
