"""
Count-based circuit breaker.

The breaker records the outcome of the last ``sliding_window_size`` calls.
Once at least ``minimum_number_of_calls`` outcomes are recorded and the
failure rate reaches ``failure_rate_threshold`` percent, it opens and rejects
calls for ``wait_duration_in_open_state`` seconds. The first call after that
moves it to half-open, where a limited number of trial calls decide whether
it closes again or reopens.
"""

import asyncio
import logging
import time
from collections import deque
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any, TypeVar

from choreography.exceptions import TRANSIENT_EXCEPTIONS

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CircuitState(Enum):
    """
    State of the circuit breaker.

    Attributes:
        CLOSED: Normal operation, calls are allowed through
        OPEN: Failure rate exceeded, calls are rejected
        HALF_OPEN: Trial calls are testing whether the dependency recovered
    """

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass(frozen=True)
class CircuitBreakerConfig:
    """
    Configuration for circuit breaker behavior.

    Attributes:
        sliding_window_size: Number of most recent outcomes considered
        minimum_number_of_calls: Outcomes required before the rate is evaluated
        failure_rate_threshold: Failure percentage (0-100] that opens the circuit
        wait_duration_in_open_state: Seconds to stay open before a trial call
        permitted_calls_in_half_open_state: Trial calls allowed while half-open
        recorded_exceptions: Exceptions that count as failures; others pass
            through without being recorded
    """

    sliding_window_size: int = 5
    minimum_number_of_calls: int = 5
    failure_rate_threshold: float = 50.0
    wait_duration_in_open_state: float = 10.0
    permitted_calls_in_half_open_state: int = 1
    recorded_exceptions: tuple[type[BaseException], ...] = TRANSIENT_EXCEPTIONS

    def __post_init__(self) -> None:
        if self.sliding_window_size < 1:
            raise ValueError(f"sliding_window_size must be >= 1, got {self.sliding_window_size}.")

        if not 1 <= self.minimum_number_of_calls <= self.sliding_window_size:
            raise ValueError(
                f"minimum_number_of_calls must be between 1 and sliding_window_size "
                f"({self.sliding_window_size}), got {self.minimum_number_of_calls}."
            )

        if not 0.0 < self.failure_rate_threshold <= 100.0:
            raise ValueError(
                f"failure_rate_threshold must be in (0, 100], got {self.failure_rate_threshold}."
            )

        if self.wait_duration_in_open_state <= 0:
            raise ValueError(
                f"wait_duration_in_open_state must be positive, "
                f"got {self.wait_duration_in_open_state}."
            )

        if self.permitted_calls_in_half_open_state < 1:
            raise ValueError(
                f"permitted_calls_in_half_open_state must be >= 1, "
                f"got {self.permitted_calls_in_half_open_state}."
            )


class CircuitBreakerOpenError(Exception):
    """
    Raised when the circuit breaker rejects a call.

    Attributes:
        name: Name of the circuit breaker
        recovery_time: Clock value at which a trial call will be allowed
    """

    def __init__(self, message: str, recovery_time: float, name: str = "") -> None:
        super().__init__(message)
        self.name = name
        self.recovery_time = recovery_time


class CircuitBreaker:
    """
    Circuit breaker with a count-based sliding window.

    Example:
        >>> breaker = CircuitBreaker("payment-service")
        >>> result = await breaker.execute(lambda: client.process_payment(order_id, amount))
    """

    def __init__(
        self,
        name: str,
        config: CircuitBreakerConfig | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.name = name
        self.config = config or CircuitBreakerConfig()
        self._clock = clock
        self._state = CircuitState.CLOSED
        self._window: deque[bool] = deque(maxlen=self.config.sliding_window_size)
        self._opened_at: float | None = None
        self._half_open_calls = 0
        self._half_open_successes = 0
        self._lock = asyncio.Lock()

    @property
    def state(self) -> CircuitState:
        """Current state. An expired OPEN state is reported until the next call."""
        return self._state

    @property
    def failure_rate(self) -> float:
        """Failure percentage over the window, or -1.0 below the minimum call count."""
        if len(self._window) < self.config.minimum_number_of_calls:
            return -1.0
        failures = sum(1 for ok in self._window if not ok)
        return failures * 100.0 / len(self._window)

    @property
    def is_closed(self) -> bool:
        return self._state == CircuitState.CLOSED

    @property
    def is_open(self) -> bool:
        return self._state == CircuitState.OPEN

    @property
    def is_half_open(self) -> bool:
        return self._state == CircuitState.HALF_OPEN

    async def execute(
        self,
        operation: Callable[[], Awaitable[T]],
        operation_name: str = "operation",
    ) -> T:
        """
        Execute an operation through the circuit breaker.

        Raises:
            CircuitBreakerOpenError: If the call is not permitted
            Exception: Whatever the operation raises
        """
        await self._acquire_permission(operation_name)

        try:
            result = await operation()
        except self.config.recorded_exceptions:
            await self.record_failure()
            raise
        except BaseException:
            await self._release_trial()
            raise

        await self.record_success()
        return result

    async def record_success(self) -> None:
        async with self._lock:
            if self._state == CircuitState.HALF_OPEN:
                self._half_open_successes += 1
                if self._half_open_successes >= self.config.permitted_calls_in_half_open_state:
                    self._transition(CircuitState.CLOSED)
            elif self._state == CircuitState.CLOSED:
                self._window.append(True)

    async def record_failure(self) -> None:
        async with self._lock:
            if self._state == CircuitState.HALF_OPEN:
                self._transition(CircuitState.OPEN)
            elif self._state == CircuitState.CLOSED:
                self._window.append(False)
                rate = self.failure_rate
                if rate >= self.config.failure_rate_threshold:
                    self._transition(CircuitState.OPEN, failure_rate=rate)

    def reset(self) -> None:
        """Reset the circuit breaker to closed state with an empty window."""
        self._state = CircuitState.CLOSED
        self._window.clear()
        self._opened_at = None
        self._half_open_calls = 0
        self._half_open_successes = 0
        logger.info("Circuit breaker reset to closed state", extra={"circuit": self.name})

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "state": self._state.value,
            "failure_rate": self.failure_rate,
            "buffered_calls": len(self._window),
            "failed_calls": sum(1 for ok in self._window if not ok),
            "opened_at": self._opened_at,
            "half_open_calls": self._half_open_calls,
        }

    async def _acquire_permission(self, operation_name: str) -> None:
        async with self._lock:
            if self._state == CircuitState.OPEN:
                assert self._opened_at is not None
                recovery_time = self._opened_at + self.config.wait_duration_in_open_state
                if self._clock() < recovery_time:
                    raise CircuitBreakerOpenError(
                        f"Circuit breaker {self.name} is open for {operation_name}",
                        recovery_time=recovery_time,
                        name=self.name,
                    )
                self._transition(CircuitState.HALF_OPEN)

            if self._state == CircuitState.HALF_OPEN:
                if self._half_open_calls >= self.config.permitted_calls_in_half_open_state:
                    raise CircuitBreakerOpenError(
                        f"Circuit breaker {self.name} is half-open and has no trial calls left",
                        recovery_time=self._clock(),
                        name=self.name,
                    )
                self._half_open_calls += 1

    async def _release_trial(self) -> None:
        # Unrecorded failure: give the trial slot back without judging the dependency
        async with self._lock:
            if self._state == CircuitState.HALF_OPEN and self._half_open_calls > 0:
                self._half_open_calls -= 1

    def _transition(self, new_state: CircuitState, **extra: Any) -> None:
        old_state = self._state
        self._state = new_state
        if new_state == CircuitState.OPEN:
            self._opened_at = self._clock()
        elif new_state == CircuitState.HALF_OPEN:
            self._half_open_calls = 0
            self._half_open_successes = 0
        elif new_state == CircuitState.CLOSED:
            self._window.clear()
            self._opened_at = None
            self._half_open_calls = 0
            self._half_open_successes = 0

        logger.warning(
            "Circuit breaker %s transitioned from %s to %s",
            self.name,
            old_state.value,
            new_state.value,
            extra={
                "circuit": self.name,
                "from_state": old_state.value,
                "to_state": new_state.value,
                **extra,
            },
        )


__all__ = [
    "CircuitBreaker",
    "CircuitBreakerConfig",
    "CircuitBreakerOpenError",
    "CircuitState",
]
