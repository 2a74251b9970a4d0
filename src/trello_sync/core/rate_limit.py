"""Rolling-window rate limiter for Trello API requests.

Trello documents its quota as a fixed number of requests per rolling
window (300 per 10 seconds per token, 100 per 10 seconds per board).
``RateLimiter`` keeps the dispatch timestamps of the current window and
makes callers wait, in arrival order, until the oldest timestamp ages
out. Calls are queued, never dropped.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from typing import Any, Awaitable, Callable

logger = logging.getLogger(__name__)


class RateLimiter:
    """Allow at most ``max_requests`` acquisitions per ``window_seconds``.

    Waiters are served FIFO: the limiter holds an ``asyncio.Lock`` while
    a caller waits for capacity, and asyncio locks wake waiters in
    arrival order.

    Args:
        max_requests: Capacity of one window.
        window_seconds: Length of the rolling window.
        name: Label used in log messages.
        clock: Monotonic time source (injectable for tests).
        sleep: Coroutine used to wait (injectable for tests).
    """

    def __init__(
        self,
        max_requests: int,
        window_seconds: float,
        *,
        name: str = "token",
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
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
        self._stamps: deque[float] = deque()
        self._lock = asyncio.Lock()
        self._total_requests = 0
        self._total_wait_time = 0.0

    async def acquire(self) -> None:
        """Wait until the window has capacity, then consume one slot."""
        async with self._lock:
            while True:
                now = self._clock()
                self._evict(now)
                if len(self._stamps) < self.max_requests:
                    self._stamps.append(now)
                    self._total_requests += 1
                    return

                wait_time = max(
                    self._stamps[0] + self.window_seconds - now, 0.0
                )
                logger.debug(
                    "Rate limit (%s): %d/%d used, waiting %.3fs",
                    self.name,
                    len(self._stamps),
                    self.max_requests,
                    wait_time,
                )
                self._total_wait_time += wait_time
                await self._sleep(wait_time)

    def _evict(self, now: float) -> None:
        """Forget dispatches that have left the window."""
        while self._stamps and now - self._stamps[0] >= self.window_seconds:
            self._stamps.popleft()

    @property
    def available(self) -> int:
        """Slots free in the current window."""
        self._evict(self._clock())
        return self.max_requests - len(self._stamps)

    @property
    def stats(self) -> dict[str, Any]:
        """Get rate limiter statistics."""
        return {
            "name": self.name,
            "total_requests": self._total_requests,
            "total_wait_time": self._total_wait_time,
            "available": self.available,
            "max_requests": self.max_requests,
            "window_seconds": self.window_seconds,
        }
