"""
tenancy_sdk.tier1_runtime.clock
─────────────────────────────────
Mockable time source. Trial expiry, suspension stamps and billing periods
read the current time from a Clock so tests can pin it.
"""
from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Callable


class Clock:
    """Wall clock returning aware UTC datetimes. Override now_fn in tests."""

    def __init__(self, now_fn: Callable[[], datetime] | None = None) -> None:
        self._now_fn = now_fn or (lambda: datetime.now(tz=timezone.utc))

    def now(self) -> datetime:
        """Return the current UTC datetime."""
        return self._now_fn()

    def freeze(self, dt: datetime) -> "Clock":
        """Return a new Clock frozen at the given datetime."""
        if dt.tzinfo is None:
            raise ValueError("Clock.freeze() needs an aware datetime")
        return Clock(now_fn=lambda: dt)

    def advance(self, delta: timedelta) -> "Clock":
        """Return a new Clock frozen at now() + *delta*."""
        return self.freeze(self.now() + delta)


_clock = Clock()


def get_clock() -> Clock:
    """Return the process clock."""
    return _clock


def set_clock(clock: Clock) -> None:
    """Replace the process clock (use in tests)."""
    global _clock
    _clock = clock


def utcnow() -> datetime:
    return _clock.now()


__all__ = ["Clock", "get_clock", "set_clock", "utcnow"]
