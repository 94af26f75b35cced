from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable


class RateLimiter:
    """Releases callers one at a time, at least ``interval_s`` apart.

    Waiters queue on an ``asyncio.Lock``, which wakes them in arrival order, so
    releases are FIFO even when many fetches are issued concurrently. One
    instance guards one origin; tests build their own with a fake clock.
    """

    def __init__(
        self,
        interval_s: float,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep_fn: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        if interval_s < 0:
            raise ValueError("interval_s must be zero or greater")
        self._interval_s = interval_s
        self._clock = clock
        self._sleep_fn = sleep_fn
        self._lock = asyncio.Lock()
        self._last_release: float | None = None

    @property
    def interval_s(self) -> float:
        return self._interval_s

    async def throttle(self) -> float:
        """Wait for this caller's slot. Returns the seconds spent sleeping."""
        async with self._lock:
            waited = 0.0
            if self._last_release is not None:
                waited = self._interval_s - (self._clock() - self._last_release)
                if waited > 0:
                    await self._sleep_fn(waited)
                else:
                    waited = 0.0
            self._last_release = self._clock()
            return waited
