"""Injectable clock for poll loops.

Poll loops read time and suspend only through a ``Clock`` so tests can
drive them with ``FakeClock`` instead of waiting on the wall clock.
"""

from __future__ import annotations

import asyncio
import time
from typing import Protocol


class Clock(Protocol):
    def monotonic(self) -> float:
        """Seconds from an arbitrary fixed origin; never goes backwards."""
        ...

    async def sleep(self, seconds: float) -> None:
        """Suspend the calling operation."""
        ...


class SystemClock:
    """Real time: ``time.monotonic`` and ``asyncio.sleep``."""

    def monotonic(self) -> float:
        return time.monotonic()

    async def sleep(self, seconds: float) -> None:
        await asyncio.sleep(seconds)


class FakeClock:
    """Virtual time that advances only when slept on."""

    def __init__(self, start: float = 0.0) -> None:
        self.now = start
        self.sleeps: list[float] = []

    def monotonic(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += max(seconds, 0.0)
        # Yield so cancellation and other tasks still get a turn.
        await asyncio.sleep(0)

    def advance(self, seconds: float) -> None:
        self.now += seconds


class Deadline:
    """Absolute point in clock time after which waiting stops."""

    __slots__ = ('_clock', '_expires_at', 'timeout_seconds')

    def __init__(self, clock: Clock, timeout_seconds: float) -> None:
        if timeout_seconds <= 0:
            raise ValueError('timeout_seconds must be > 0')
        self._clock = clock
        self.timeout_seconds = float(timeout_seconds)
        self._expires_at = clock.monotonic() + self.timeout_seconds

    def remaining(self) -> float:
        return max(self._expires_at - self._clock.monotonic(), 0.0)

    @property
    def expired(self) -> bool:
        return self._clock.monotonic() >= self._expires_at
