"""Reservoir rate limiter shared by every turn calling one provider."""

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Dict

from ..errors import RateLimited

logger = logging.getLogger(__name__)


class ReservoirRateLimiter:
    """Allows ``capacity`` calls per ``refresh_interval`` seconds.

    The reservoir is refilled to full capacity at each interval boundary.
    Callers that find it empty queue in FIFO order for the next refill, up to
    ``max_wait`` seconds each; a caller that cannot be served within its
    ceiling fails with RateLimited.
    """

    def __init__(
        self,
        capacity: int,
        refresh_interval: float,
        max_wait: float = 0.0,
        provider: str = "",
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        if capacity < 1:
            raise ValueError("Reservoir capacity must be at least 1")
        if refresh_interval <= 0:
            raise ValueError("Refresh interval must be positive")
        self.capacity = capacity
        self.refresh_interval = refresh_interval
        self.max_wait = max_wait
        self.provider = provider
        self._clock = clock
        self._sleep = sleep
        self._remaining = capacity
        self._window_start = clock()
        self._lock = asyncio.Lock()
        self._waiting = 0
        self.granted = 0
        self.rejected = 0

    def _refill(self) -> None:
        now = self._clock()
        elapsed = now - self._window_start
        if elapsed >= self.refresh_interval:
            windows = int(elapsed // self.refresh_interval)
            self._window_start += windows * self.refresh_interval
            self._remaining = self.capacity

    def _next_refill_in(self) -> float:
        return max(0.0, self._window_start + self.refresh_interval - self._clock())

    def _reject(self, reason: str) -> RateLimited:
        self.rejected += 1
        logger.warning(f"Rate limiter rejected call for {self.provider or 'provider'}: {reason}")
        return RateLimited(f"Rate limit reservoir exhausted ({reason})", provider=self.provider)

    async def acquire(self) -> None:
        """Take one slot, waiting for a refill if allowed.

        Raises:
            RateLimited: If no slot frees up within ``max_wait``.
        """
        deadline = self._clock() + self.max_wait
        self._waiting += 1
        try:
            try:
                # Lock waiters are woken in arrival order, which gives FIFO queueing.
                await asyncio.wait_for(self._lock.acquire(), timeout=max(self.max_wait, 0.001))
            except asyncio.TimeoutError:
                raise self._reject("queue wait ceiling reached while queued")

            try:
                self._refill()
                if self._remaining == 0:
                    wait = self._next_refill_in()
                    if self._clock() + wait > deadline:
                        raise self._reject(f"next refill in {wait:.2f}s")
                    logger.debug(f"Reservoir empty, waiting {wait:.2f}s for refill")
                    await self._sleep(wait)
                    self._refill()
                    if self._remaining == 0:
                        raise self._reject("reservoir still empty after refill")
                self._remaining -= 1
                self.granted += 1
            finally:
                self._lock.release()
        finally:
            self._waiting -= 1

    @property
    def remaining(self) -> int:
        self._refill()
        return self._remaining

    def get_stats(self) -> Dict[str, Any]:
        return {
            "capacity": self.capacity,
            "remaining": self.remaining,
            "refresh_interval_seconds": self.refresh_interval,
            "max_wait_seconds": self.max_wait,
            "queued": self._waiting,
            "granted": self.granted,
            "rejected": self.rejected,
        }
