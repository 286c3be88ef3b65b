"""Rate limiter for upstream fetches."""

import asyncio
import time
from typing import Awaitable, Callable, TypeVar


T = TypeVar("T")


class RateLimiter:
    """
    Bounds concurrency and enforces a minimum spacing between job starts.

    Usage:
        limiter = RateLimiter(max_concurrent=1, min_interval=0.067)
        events = await limiter.schedule(client.fetch_recent_transfers, contract)
    """

    def __init__(self, max_concurrent: int = 1, min_interval: float = 0.0):
        if max_concurrent < 1:
            raise ValueError("max_concurrent must be at least 1")
        self.max_concurrent = max_concurrent
        self.min_interval = min_interval
        self._semaphore = asyncio.Semaphore(max_concurrent)
        self._start_lock = asyncio.Lock()
        self._last_start = float("-inf")
        self._in_flight = 0

    @property
    def in_flight(self) -> int:
        """Number of jobs currently running."""
        return self._in_flight

    async def _wait_for_slot(self) -> None:
        async with self._start_lock:
            elapsed = time.monotonic() - self._last_start
            if elapsed < self.min_interval:
                await asyncio.sleep(self.min_interval - elapsed)
            self._last_start = time.monotonic()

    async def schedule(self, func: Callable[..., Awaitable[T]], *args, **kwargs) -> T:
        """Run ``func`` once a concurrency slot and start spacing allow it."""
        async with self._semaphore:
            await self._wait_for_slot()
            self._in_flight += 1
            try:
                return await func(*args, **kwargs)
            finally:
                self._in_flight -= 1
