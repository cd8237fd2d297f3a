"""Reliability layer wrapping every call to the language-model provider."""

import asyncio
import logging
import random
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

from ..config import ReliabilityConfig
from ..errors import CircuitOpen, RateLimited, ReliabilityError
from ..models import Message
from ..providers.base import LLMProvider, ProviderReply, RateLimitError
from .circuit_breaker import CircuitBreaker
from .rate_limiter import ReservoirRateLimiter
from .retry import RetryPolicy

logger = logging.getLogger(__name__)


@dataclass
class ReliabilityState:
    """Process-wide reliability state for one provider.

    Built once per provider and handed to every ReliabilityLayer wrapping it,
    so all turns contend on the same reservoir and circuit.
    """

    rate_limiter: ReservoirRateLimiter
    circuit_breaker: CircuitBreaker
    retry_policy: RetryPolicy

    @classmethod
    def from_config(
        cls,
        config: ReliabilityConfig,
        provider: str = "",
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        rng: Optional[random.Random] = None,
    ) -> "ReliabilityState":
        return cls(
            rate_limiter=ReservoirRateLimiter(
                capacity=config.reservoir_size,
                refresh_interval=config.refresh_interval,
                max_wait=config.max_queue_wait,
                provider=provider,
                clock=clock,
                sleep=sleep,
            ),
            circuit_breaker=CircuitBreaker(
                failure_threshold=config.failure_threshold,
                window_size=config.window_size,
                min_calls=config.min_calls,
                cooldown=config.cooldown,
                provider=provider,
                clock=clock,
            ),
            retry_policy=RetryPolicy(
                max_retries=config.max_retries,
                base_delay=config.base_delay,
                max_delay=config.max_delay,
                rng=rng,
            ),
        )


class ReliabilityLayer:
    """Rate limiting, retry with backoff and circuit breaking around one provider.

    ``invoke`` either returns a ProviderReply or raises:

    - CircuitOpen: the circuit rejected the call; the provider was not contacted.
    - RateLimited: no reservoir slot within the wait ceiling, or the provider
      answered with an explicit rate limit (never retried here).
    - LLMProviderError (or another transport exception): non-transient failure,
      or a transient one that outlived the retry budget.
    """

    def __init__(
        self,
        provider: LLMProvider,
        state: ReliabilityState,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.provider = provider
        self.state = state
        self._sleep = sleep

        self.total_calls = 0
        self.successful_calls = 0
        self.failed_calls = 0
        self.rejected_calls = 0

    async def invoke(
        self,
        messages: list[Message],
        tools: Optional[list[dict[str, Any]]] = None,
        **kwargs: Any,
    ) -> ProviderReply:
        self.total_calls += 1
        breaker = self.state.circuit_breaker

        try:
            ticket = await breaker.before_call()
        except CircuitOpen:
            self.rejected_calls += 1
            logger.warning(f"Call to {self.provider.name} rejected: circuit open")
            raise

        async def attempt() -> ProviderReply:
            await self.state.rate_limiter.acquire()
            return await self.provider.call(messages, tools, **kwargs)

        try:
            reply = await self.state.retry_policy.run(
                attempt, sleep=self._sleep, description=f"{self.provider.name} call"
            )
        except ReliabilityError:
            self.rejected_calls += 1
            await breaker.release(ticket)
            raise
        except RateLimitError as e:
            self.rejected_calls += 1
            await breaker.release(ticket)
            logger.warning(f"{self.provider.name} reported a rate limit: {e}")
            raise RateLimited(str(e), provider=self.provider.name) from e
        except Exception as e:
            self.failed_calls += 1
            await breaker.record_failure(ticket)
            logger.error(f"{self.provider.name} call failed: {type(e).__name__}: {e}")
            raise
        except BaseException:
            # Cancelled mid-call: no outcome to record, but the half-open slot must be returned.
            await breaker.release(ticket)
            raise

        self.successful_calls += 1
        await breaker.record_success(ticket)
        return reply

    def get_stats(self) -> dict[str, Any]:
        success_rate = (
            (self.successful_calls / self.total_calls * 100) if self.total_calls > 0 else 0
        )
        return {
            "provider": self.provider.name,
            "total_calls": self.total_calls,
            "successful_calls": self.successful_calls,
            "failed_calls": self.failed_calls,
            "rejected_calls": self.rejected_calls,
            "retries": self.state.retry_policy.retries,
            "success_rate": f"{success_rate:.1f}%",
            "circuit_breaker": self.state.circuit_breaker.get_stats(),
            "rate_limiter": self.state.rate_limiter.get_stats(),
        }
