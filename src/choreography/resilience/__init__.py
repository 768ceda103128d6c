"""Resilience primitives for synchronous calls: circuit breaker and bounded retry."""

from choreography.resilience.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitBreakerOpenError,
    CircuitState,
)
from choreography.resilience.retry import (
    RetryConfig,
    RetryError,
    RetryStats,
    calculate_backoff,
    retry_async,
)

__all__ = [
    "CircuitBreaker",
    "CircuitBreakerConfig",
    "CircuitBreakerOpenError",
    "CircuitState",
    "RetryConfig",
    "RetryError",
    "RetryStats",
    "calculate_backoff",
    "retry_async",
]
