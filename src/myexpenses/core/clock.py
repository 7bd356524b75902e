"""Clock abstraction for audit timestamps.

WallClock: real wall-clock time (production)
SimClock: deterministic simulated time (tests, data imports)

The persistence context never calls datetime.now() directly; it asks its clock.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Protocol


class IClock(Protocol):
    """Clock interface used by all time-dependent code."""

    def now(self) -> datetime:
        """Current time as timezone-aware UTC datetime."""
        ...


class WallClock:
    """Real wall-clock time."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class SimClock:
    """Simulated clock for deterministic audit stamping.

    Time advances only when explicitly set by the caller.
    """

    def __init__(self, start: datetime | None = None) -> None:
        start = start or datetime(2025, 1, 1, tzinfo=timezone.utc)
        if start.tzinfo is None:
            raise ValueError("SimClock start time must be timezone-aware")
        self._time = start

    def now(self) -> datetime:
        return self._time

    def set_time(self, t: datetime) -> None:
        """Move to *t*. Must be monotonically non-decreasing."""
        if t < self._time:
            raise ValueError(
                f"SimClock cannot go backwards: {t} < {self._time}"
            )
        self._time = t

    def advance(self, delta: timedelta) -> None:
        self.set_time(self._time + delta)

    def advance_ms(self, ms: int) -> None:
        """Advance time by milliseconds."""
        self.advance(timedelta(milliseconds=ms))
