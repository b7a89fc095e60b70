"""Time sources.

Every component that needs "now" takes a :class:`Clock` so tests can
inject a :class:`ManualClock` and step time deterministically. Timestamps
are seconds since the epoch; persisted expiry times must survive a
process restart, so the system clock is wall-clock rather than monotonic.
"""

from __future__ import annotations

import time
from typing import Protocol, runtime_checkable


@runtime_checkable
class Clock(Protocol):
    """Anything with a ``now()`` method returning seconds as a float."""

    def now(self) -> float: ...


class SystemClock:
    """Wall-clock time from :func:`time.time`."""

    def now(self) -> float:
        return time.time()


class ManualClock:
    """A clock that only moves when told to.

    Args:
        start: Initial timestamp in seconds.

    Example::

        clock = ManualClock(1000.0)
        cache = VolatileCache(clock=clock)
        cache.set("k", "v", ttl=0.1)
        clock.advance(0.101)
        assert cache.get("k") is None
    """

    def __init__(self, start: float = 0.0) -> None:
        self._now = float(start)

    def now(self) -> float:
        return self._now

    def advance(self, seconds: float) -> float:
        """Move the clock forward by *seconds* and return the new time."""
        self._now += seconds
        return self._now

    def set(self, timestamp: float) -> None:
        """Jump the clock to an absolute *timestamp*."""
        self._now = float(timestamp)
