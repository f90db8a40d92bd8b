"""Deterministic clock for rate limiter, retry and runner tests."""

from __future__ import annotations

import asyncio


class FakeClock:
    """Monotonic clock that only moves when sleep() is awaited.

    Usage:
        clock = FakeClock()
        limiter = RateLimiter(10, 1.0, clock=clock, sleep=clock.sleep)
    """

    def __init__(self, start: float = 0.0) -> None:
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += max(seconds, 0.0)
        # Yield so other tasks can observe the new time
        await asyncio.sleep(0)

    @property
    def total_slept(self) -> float:
        return sum(self.sleeps)
