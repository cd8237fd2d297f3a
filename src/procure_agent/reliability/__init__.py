"""Reliability layer: rate limiting, retries and circuit breaking for providers."""

from .circuit_breaker import CircuitBreaker, CircuitState
from .layer import ReliabilityLayer, ReliabilityState
from .rate_limiter import ReservoirRateLimiter
from .retry import RetryPolicy, is_transient

__all__ = [
    "CircuitBreaker",
    "CircuitState",
    "ReliabilityLayer",
    "ReliabilityState",
    "ReservoirRateLimiter",
    "RetryPolicy",
    "is_transient",
]
