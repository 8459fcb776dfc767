"""Minimum-interval rate limiter for provider requests."""

from __future__ import annotations

import asyncio
import time


class RateLimiter:
    """Spaces request starts at least ``1 / requests_per_second`` apart.

    Concurrency is bounded separately (by a semaphore in the caller); this
    only limits the request rate.
    """

    def __init__(self, requests_per_second: float):
        if requests_per_second <= 0:
            raise ValueError("requests_per_second must be positive")
        self._interval = 1.0 / requests_per_second
        self._lock = asyncio.Lock()
        self._next_slot = 0.0

    async def acquire(self) -> None:
        async with self._lock:
            now = time.monotonic()
            wait = self._next_slot - now
            self._next_slot = max(now, self._next_slot) + self._interval
        if wait > 0:
            await asyncio.sleep(wait)

    async def __aenter__(self) -> RateLimiter:
        await self.acquire()
        return self

    async def __aexit__(self, *exc_info) -> None:
        return None
