"""Client-side throttling for Microsoft Graph calls.

Graph throttles per app and tenant and answers 429 when exceeded. The
limiter keeps the batch under a configured budget so 429s stay rare; the
retry policy handles the ones that still happen.

Sliding-window log: the grant time of every slot in the current window is
kept, so no more than `limit` acquisitions resolve within any rolling window
of `window_seconds`. A fixed window would allow 2 * limit across a boundary.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

logger = logging.getLogger(__name__)

# Tolerance for float clock arithmetic when a slot leaves the window
CLOCK_EPSILON_SECONDS = 1e-9


@dataclass(frozen=True)
class RateBudget:
    """Read-only view of the limiter state.

    Attributes:
        window_start: Clock time of the oldest slot still in the window.
        calls_in_window: Slots granted within the current window.
        limit: Maximum slots per window.
        window_seconds: Window length.
    """

    window_start: float
    calls_in_window: int
    limit: int
    window_seconds: float

    @property
    def remaining(self) -> int:
        return max(self.limit - self.calls_in_window, 0)


class RateLimiter:
    """Async rate limiter shared by every task in a batch.

    Usage:
        limiter = RateLimiter(limit=10, window_seconds=1.0)
        await limiter.acquire()  # Suspends until a slot is free
    """

    def __init__(
        self,
        limit: int,
        window_seconds: float,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        if limit < 1:
            raise ValueError("limit must be at least 1")
        if window_seconds <= 0:
            raise ValueError("window_seconds must be greater than 0")

        self._limit = limit
        self._window = window_seconds
        self._clock = clock
        self._sleep = sleep
        self._grants: deque[float] = deque()
        # asyncio.Lock wakes waiters in FIFO order
        self._lock = asyncio.Lock()
        self._total_waited = 0.0

    @property
    def limit(self) -> int:
        return self._limit

    @property
    def window_seconds(self) -> float:
        return self._window

    @property
    def total_wait_seconds(self) -> float:
        """Cumulative time callers spent waiting for a slot."""
        return self._total_waited

    @property
    def budget(self) -> RateBudget:
        now = self._clock()
        self._expire(now)
        return RateBudget(
            window_start=self._grants[0] if self._grants else now,
            calls_in_window=len(self._grants),
            limit=self._limit,
            window_seconds=self._window,
        )

    def _expire(self, now: float) -> None:
        while self._grants and now - self._grants[0] >= self._window - CLOCK_EPSILON_SECONDS:
            self._grants.popleft()

    async def acquire(self) -> None:
        """Suspend until a call slot is available, then take it."""
        async with self._lock:
            while True:
                now = self._clock()
                self._expire(now)
                if len(self._grants) < self._limit:
                    self._grants.append(now)
                    return

                wait = self._grants[0] + self._window - now
                logger.debug(
                    "Rate budget exhausted, waiting",
                    extra={
                        "wait_seconds": round(wait, 3),
                        "limit": self._limit,
                        "window_seconds": self._window,
                    },
                )
                self._total_waited += wait
                await self._sleep(wait)
