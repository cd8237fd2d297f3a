"""Circuit breaker guarding a provider."""

import asyncio
import logging
import time
from collections import deque
from enum import Enum
from typing import Any, Callable, Deque, Dict, Optional

from ..errors import CircuitOpen

logger = logging.getLogger(__name__)


class CircuitState(str, Enum):
    CLOSED = "CLOSED"
    OPEN = "OPEN"
    HALF_OPEN = "HALF_OPEN"


class CircuitBreaker:
    """Rolling-window circuit breaker.

    CLOSED -> OPEN when the window holds at least ``min_calls`` outcomes and the
    failure ratio exceeds ``failure_threshold``. OPEN rejects every call until
    ``cooldown`` seconds have passed, then HALF_OPEN admits exactly one trial call:
    success closes the circuit with a fresh window, failure reopens it.

    ``before_call`` returns a ticket naming the generation the call was admitted
    in; every state change starts a new generation. Outcomes reported with a
    ticket from an earlier generation are ignored, so a call admitted while
    CLOSED can never close or reopen a circuit whose trial call is still running.
    """

    def __init__(
        self,
        failure_threshold: float = 0.5,
        window_size: int = 10,
        min_calls: int = 5,
        cooldown: float = 30.0,
        provider: str = "",
        clock: Callable[[], float] = time.monotonic,
    ):
        if not 0 < failure_threshold <= 1:
            raise ValueError("failure_threshold must be in (0, 1]")
        self.failure_threshold = failure_threshold
        self.window_size = window_size
        self.min_calls = min(min_calls, window_size)
        self.cooldown = cooldown
        self.provider = provider
        self._clock = clock
        self._state = CircuitState.CLOSED
        self._window: Deque[bool] = deque(maxlen=window_size)
        self._changed_at = clock()
        self._generation = 0
        self._trial_in_flight = False
        self._lock = asyncio.Lock()
        self.rejected = 0
        self.stale_outcomes = 0
        self.transitions = 0

    def _transition(self, new_state: CircuitState) -> None:
        if new_state == self._state:
            return
        logger.warning(
            f"Circuit breaker for {self.provider or 'provider'}: "
            f"{self._state.value} -> {new_state.value}"
        )
        self._state = new_state
        self._changed_at = self._clock()
        self._generation += 1
        self._trial_in_flight = False
        self.transitions += 1

    def _cooldown_remaining(self) -> float:
        return max(0.0, self._changed_at + self.cooldown - self._clock())

    def _is_stale(self, ticket: int) -> bool:
        if ticket == self._generation:
            return False
        self.stale_outcomes += 1
        logger.debug(
            f"Ignoring outcome admitted in generation {ticket} "
            f"(current {self._generation}, {self._state.value})"
        )
        return True

    @property
    def state(self) -> CircuitState:
        """Current state, reporting HALF_OPEN once an OPEN circuit has cooled down."""
        if self._state == CircuitState.OPEN and self._cooldown_remaining() == 0:
            return CircuitState.HALF_OPEN
        return self._state

    async def before_call(self) -> int:
        """Admit or reject a call.

        Returns:
            The admission ticket to pass to ``record_success``, ``record_failure``
            or ``release``.

        Raises:
            CircuitOpen: If the circuit is OPEN, or HALF_OPEN with a trial call in flight.
        """
        async with self._lock:
            if self._state == CircuitState.OPEN:
                remaining = self._cooldown_remaining()
                if remaining > 0:
                    self.rejected += 1
                    raise CircuitOpen(
                        f"Circuit open, retry in {remaining:.1f}s",
                        provider=self.provider,
                        retry_after=remaining,
                    )
                self._transition(CircuitState.HALF_OPEN)

            if self._state == CircuitState.HALF_OPEN:
                if self._trial_in_flight:
                    self.rejected += 1
                    raise CircuitOpen("Circuit half-open, trial call in flight", provider=self.provider)
                self._trial_in_flight = True
            return self._generation

    async def record_success(self, ticket: int) -> None:
        async with self._lock:
            if self._is_stale(ticket):
                return
            if self._state == CircuitState.HALF_OPEN:
                self._window.clear()
                self._transition(CircuitState.CLOSED)
                return
            self._window.append(True)

    async def record_failure(self, ticket: int) -> None:
        async with self._lock:
            if self._is_stale(ticket):
                return
            if self._state == CircuitState.HALF_OPEN:
                self._transition(CircuitState.OPEN)
                return
            self._window.append(False)
            if len(self._window) >= self.min_calls and self.failure_ratio > self.failure_threshold:
                self._transition(CircuitState.OPEN)

    async def release(self, ticket: int) -> None:
        """Give back an admitted call whose outcome says nothing about provider health."""
        async with self._lock:
            if ticket == self._generation and self._state == CircuitState.HALF_OPEN:
                self._trial_in_flight = False

    @property
    def failure_ratio(self) -> float:
        if not self._window:
            return 0.0
        return self._window.count(False) / len(self._window)

    def get_stats(self) -> Dict[str, Any]:
        retry_after: Optional[float] = None
        if self._state == CircuitState.OPEN:
            retry_after = self._cooldown_remaining()
        return {
            "state": self.state.value,
            "window": len(self._window),
            "failure_ratio": self.failure_ratio,
            "failure_threshold": self.failure_threshold,
            "cooldown_seconds": self.cooldown,
            "retry_after_seconds": retry_after,
            "rejected": self.rejected,
            "stale_outcomes": self.stale_outcomes,
            "transitions": self.transitions,
        }
