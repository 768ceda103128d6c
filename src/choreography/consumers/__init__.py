"""Consumer-side guards: idempotent handling and retry with dead-lettering."""

from choreography.consumers.idempotency import (
    SQLITE_AVAILABLE,
    HandlerOutcome,
    IdempotentConsumer,
    InMemoryProcessedEventStore,
    ProcessedEventStore,
    SQLiteNotAvailableError,
    SQLiteProcessedEventStore,
)
from choreography.consumers.retry import (
    DLQ_REASON_EXHAUSTED,
    DLQ_REASON_FATAL,
    FailureInfo,
    RetryPolicy,
    dead_letter_body,
    with_retry,
)

__all__ = [
    "DLQ_REASON_EXHAUSTED",
    "DLQ_REASON_FATAL",
    "FailureInfo",
    "HandlerOutcome",
    "IdempotentConsumer",
    "InMemoryProcessedEventStore",
    "ProcessedEventStore",
    "RetryPolicy",
    "SQLITE_AVAILABLE",
    "SQLiteNotAvailableError",
    "SQLiteProcessedEventStore",
    "dead_letter_body",
    "with_retry",
]
