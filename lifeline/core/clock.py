"""
Injectable time source.

Rate limiting and cooldown compare durations between timestamps taken from
a Clock rather than parsing wall-clock strings, so tests can drive time
explicitly and the limiter never depends on string ordering.
"""

from __future__ import annotations

import time
from datetime import datetime, timezone
from typing import Protocol


class Clock(Protocol):
    """Anything that can report the current time."""

    def time(self) -> float:
        """Seconds since the epoch."""
        ...

    def now(self) -> datetime:
        """Current UTC datetime."""
        ...


class SystemClock:
    """
    Epoch seconds that advance with the monotonic clock.

    The wall clock is read once, at construction; after that, time moves
    only by ``time.monotonic()``. NTP corrections or manual changes to the
    host clock, in either direction, do not shorten or stretch a cooldown
    within one process. History persisted by an earlier process is still
    compared as epoch seconds, and ``elapsed_since`` clamps what would be
    negative.
    """

    def __init__(self) -> None:
        self._wall_anchor = time.time()
        self._mono_anchor = time.monotonic()

    def time(self) -> float:
        return self._wall_anchor + (time.monotonic() - self._mono_anchor)

    def now(self) -> datetime:
        return datetime.fromtimestamp(self.time(), tz=timezone.utc)


def elapsed_since(clock: Clock, timestamp: float) -> float:
    """
    Seconds elapsed since ``timestamp``, never negative.

    A timestamp in the future (clock stepped backwards) counts as "just now".
    """
    return max(0.0, clock.time() - timestamp)
