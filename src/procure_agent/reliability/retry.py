"""Retry with exponential backoff and jitter for transient provider faults."""

import asyncio
import logging
import random
from typing import Any, Awaitable, Callable, Optional, TypeVar

import httpx

from ..providers.base import LLMProviderError

logger = logging.getLogger(__name__)

T = TypeVar("T")


def is_transient(error: BaseException) -> bool:
    """Return True for faults worth retrying: connection resets, timeouts, 5xx."""
    if isinstance(error, LLMProviderError):
        return error.is_retryable
    return isinstance(error, (asyncio.TimeoutError, ConnectionError, httpx.TransportError))


class RetryPolicy:
    """Retries transient failures up to ``max_retries`` times.

    Delay before retry ``n`` (0-based) is ``base_delay * 2**n`` with +/- ``jitter``
    proportional randomness, capped at ``max_delay``.
    """

    def __init__(
        self,
        max_retries: int = 3,
        base_delay: float = 1.0,
        max_delay: float = 10.0,
        jitter: float = 0.2,
        rng: Optional[random.Random] = None,
    ):
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.jitter = jitter
        self._rng = rng or random.Random()
        self.retries = 0

    def compute_delay(self, attempt: int) -> float:
        delay = self.base_delay * (2**attempt)
        delay += delay * self._rng.uniform(-self.jitter, self.jitter)
        return max(0.0, min(delay, self.max_delay))

    async def run(
        self,
        operation: Callable[[], Awaitable[T]],
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        description: str = "provider call",
    ) -> T:
        """Run ``operation``, retrying transient failures.

        Non-transient errors and the last transient error are re-raised as is.
        """
        attempt = 0
        while True:
            try:
                return await operation()
            except Exception as e:
                if not is_transient(e):
                    logger.debug(f"Non-retryable error in {description}: {type(e).__name__}")
                    raise
                if attempt >= self.max_retries:
                    logger.error(
                        f"{description} failed after {attempt + 1} attempts: "
                        f"{type(e).__name__}: {e}"
                    )
                    raise
                delay = self.compute_delay(attempt)
                attempt += 1
                self.retries += 1
                logger.warning(
                    f"Transient error in {description} ({type(e).__name__}: {e}), "
                    f"retry {attempt}/{self.max_retries} in {delay:.2f}s"
                )
                await sleep(delay)
