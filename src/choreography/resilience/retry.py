"""
Bounded retry for async operations.

This module provides:
- RetryConfig: Configuration for retry behavior
- RetryStats: Statistics for retry operations
- RetryError: Exception raised when all attempts are exhausted
- calculate_backoff: Delay before the next attempt
- retry_async: Retry an async operation on transient failures
"""

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, TypeVar

from choreography.exceptions import TRANSIENT_EXCEPTIONS

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryConfig:
    """
    Configuration for retry behavior.

    The default is a fixed wait between attempts. Set ``exponential_base``
    above 1.0 for exponential backoff.

    Attributes:
        max_attempts: Total number of attempts, including the first
        wait_seconds: Delay before the second attempt
        max_wait_seconds: Upper bound on any single delay
        exponential_base: Growth factor of the delay per attempt (1.0 = fixed)
        jitter: Fraction of the delay to randomize (0-1)

    Example:
        >>> config = RetryConfig(max_attempts=3, wait_seconds=0.5)
    """

    max_attempts: int = 3
    wait_seconds: float = 0.5
    max_wait_seconds: float = 30.0
    exponential_base: float = 1.0
    jitter: float = 0.0

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError(f"max_attempts must be >= 1, got {self.max_attempts}.")

        if self.wait_seconds < 0:
            raise ValueError(f"wait_seconds must be >= 0, got {self.wait_seconds}.")

        if self.max_wait_seconds < self.wait_seconds:
            raise ValueError(
                f"max_wait_seconds ({self.max_wait_seconds}) must be >= "
                f"wait_seconds ({self.wait_seconds})."
            )

        if self.exponential_base < 1.0:
            raise ValueError(f"exponential_base must be >= 1.0, got {self.exponential_base}.")

        if not 0.0 <= self.jitter <= 1.0:
            raise ValueError(f"jitter must be between 0.0 and 1.0, got {self.jitter}.")


@dataclass
class RetryStats:
    """
    Statistics for one retried operation.

    Attributes:
        attempts: Total number of attempts (including initial)
        failures: Number of failed attempts
        total_delay_seconds: Total time spent in delays
        last_error: String representation of the last error
    """

    attempts: int = 0
    failures: int = 0
    total_delay_seconds: float = 0.0
    last_error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "attempts": self.attempts,
            "failures": self.failures,
            "total_delay_seconds": self.total_delay_seconds,
            "last_error": self.last_error,
        }


class RetryError(Exception):
    """
    Raised when all retry attempts fail.

    Attributes:
        attempts: Number of attempts made
        last_error: The last exception that was raised
    """

    def __init__(self, message: str, attempts: int, last_error: Exception) -> None:
        super().__init__(message)
        self.attempts = attempts
        self.last_error = last_error


def calculate_backoff(attempt: int, config: RetryConfig) -> float:
    """
    Delay before the attempt following ``attempt`` (0-based).

    Example:
        >>> calculate_backoff(0, RetryConfig(wait_seconds=0.5))
        0.5
        >>> calculate_backoff(2, RetryConfig(wait_seconds=1.0, exponential_base=2.0))
        4.0
    """
    delay = config.wait_seconds * (config.exponential_base**attempt)
    delay = min(delay, config.max_wait_seconds)

    if config.jitter:
        jitter_range = delay * config.jitter
        delay += random.uniform(-jitter_range, jitter_range)  # nosec B311 - not crypto

    return max(0.0, delay)


async def retry_async(
    operation: Callable[[], Awaitable[T]],
    config: RetryConfig | None = None,
    retryable_exceptions: tuple[type[BaseException], ...] = TRANSIENT_EXCEPTIONS,
    operation_name: str = "operation",
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """
    Retry an async operation on transient failures.

    Args:
        operation: Async function to retry
        config: Retry configuration (uses defaults if None)
        retryable_exceptions: Exception types to retry on
        operation_name: Name for logging purposes
        sleep: Sleep function, injectable for tests

    Returns:
        Result of the first successful attempt

    Raises:
        RetryError: If all attempts failed with retryable exceptions
        Exception: Non-retryable exceptions are raised immediately

    Example:
        >>> result = await retry_async(
        ...     lambda: client.process_payment(order_id, amount),
        ...     RetryConfig(max_attempts=3, wait_seconds=0.5),
        ...     operation_name="process_payment",
        ... )
    """
    config = config or RetryConfig()
    stats = RetryStats()
    last_error: Exception | None = None

    for attempt in range(config.max_attempts):
        stats.attempts += 1

        try:
            result = await operation()
        except retryable_exceptions as e:
            last_error = e  # type: ignore[assignment]
            stats.failures += 1
            stats.last_error = str(e)

            if attempt + 1 < config.max_attempts:
                delay = calculate_backoff(attempt, config)
                stats.total_delay_seconds += delay
                logger.warning(
                    f"Retrying {operation_name} after failure",
                    extra={
                        "operation": operation_name,
                        "attempt": attempt + 1,
                        "max_attempts": config.max_attempts,
                        "delay_seconds": delay,
                        "error": str(e),
                        "error_type": type(e).__name__,
                    },
                )
                await sleep(delay)
            else:
                logger.error(
                    f"All attempts exhausted for {operation_name}",
                    extra={
                        "operation": operation_name,
                        "attempts": stats.attempts,
                        "total_delay_seconds": stats.total_delay_seconds,
                        "error": str(e),
                        "error_type": type(e).__name__,
                    },
                )
            continue

        if attempt > 0:
            logger.info(
                f"Operation {operation_name} succeeded after retry",
                extra={"operation": operation_name, "attempt": attempt + 1},
            )
        return result

    assert last_error is not None
    raise RetryError(
        f"Failed after {stats.attempts} attempts: {last_error}",
        attempts=stats.attempts,
        last_error=last_error,
    )


__all__ = [
    "RetryConfig",
    "RetryError",
    "RetryStats",
    "calculate_backoff",
    "retry_async",
]
