"""
Rate Limiting Module
====================

Sliding-window rate limiter used by catalog provider adapters.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from collections.abc import Awaitable, Callable

logger = logging.getLogger(__name__)


class SlidingWindowRateLimiter:
    """
    Sliding-window request counter for a single provider.

    At most max_requests acquisitions are granted within any window of
    window_seconds. Callers over the limit are suspended until the oldest
    in-window timestamp expires; requests are delayed, never dropped.
    """

    def __init__(
        self,
        max_requests: int,
        window_seconds: float = 1.0,
        name: str = "provider",
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        if max_requests < 1:
            raise ValueError("max_requests must be at least 1")
        if window_seconds <= 0:
            raise ValueError("window_seconds must be positive")
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.name = name
        self._clock = clock
        self._sleep = sleep
        self._timestamps: deque[float] = deque()
        self._lock = asyncio.Lock()

    @classmethod
    def per_second(cls, requests_per_second: float, name: str = "provider") -> SlidingWindowRateLimiter:
        """
        Build a limiter from a requests-per-second rate.

        Fractional rates below one are expressed as one request per longer window.
        """
        if requests_per_second <= 0:
            raise ValueError("requests_per_second must be positive")
        if requests_per_second >= 1:
            return cls(int(requests_per_second), 1.0, name=name)
        return cls(1, 1.0 / requests_per_second, name=name)

    def _prune(self, now: float) -> None:
        while self._timestamps and now - self._timestamps[0] >= self.window_seconds:
            self._timestamps.popleft()

    @property
    def in_window(self) -> int:
        """Number of acquisitions currently inside the window."""
        self._prune(self._clock())
        return len(self._timestamps)

    async def acquire(self) -> None:
        """
        Acquire a request slot, waiting if necessary.

        Waiters are served in arrival order since the lock is held while sleeping.
        """
        async with self._lock:
            while True:
                now = self._clock()
                self._prune(now)
                if len(self._timestamps) < self.max_requests:
                    self._timestamps.append(now)
                    return
                wait_time = self._timestamps[0] + self.window_seconds - now
                logger.info(
                    f"{self.name}: throttling for {wait_time:.3f}s "
                    f"({len(self._timestamps)}/{self.max_requests} in window)"
                )
                await self._sleep(max(wait_time, 0.0))
