"""
Idempotent consumption of at-least-once deliveries.

Brokers may deliver the same event more than once (redelivery after a crash,
a rebalance, or a producer retry). IdempotentConsumer runs a handler at most
once per (consumer group, event id) by recording every successful run in a
ProcessedEventStore and short-circuiting later deliveries of the same id.

A handler that raises records nothing, so the next delivery runs it again.
"""

from __future__ import annotations

import asyncio
import contextlib
import dataclasses
import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Protocol, runtime_checkable

from choreography.events import EventEnvelope
from choreography.observability import (
    ATTR_CONSUMER_GROUP,
    ATTR_DUPLICATE,
    ATTR_EVENT_ID,
    ATTR_EVENT_TYPE,
    Tracer,
    create_tracer,
)

# Optional dependency handling
try:
    import aiosqlite

    SQLITE_AVAILABLE = True
except ImportError:
    SQLITE_AVAILABLE = False
    aiosqlite = None  # type: ignore[assignment]

logger = logging.getLogger(__name__)


class SQLiteNotAvailableError(ImportError):
    """Raised when aiosqlite is not installed."""

    def __init__(self) -> None:
        super().__init__(
            "aiosqlite is required for SQLiteProcessedEventStore. "
            "Install it with: pip install order-choreography[sqlite]"
        )


def _now() -> datetime:
    return datetime.now(UTC)


@dataclass(frozen=True)
class HandlerOutcome:
    """
    Record of one handled event.

    Attributes:
        consumer_group: Group that handled the event
        event_id: Idempotency key of the event
        event_type: Event type tag, for inspection
        processed_at: When the handler completed
        result: Optional handler result (usually the id of the aggregate it touched)
        duplicate: True when returned for a delivery that was skipped
    """

    consumer_group: str
    event_id: str
    event_type: str
    processed_at: datetime
    result: str | None = None
    duplicate: bool = False


@runtime_checkable
class ProcessedEventStore(Protocol):
    """
    Protocol for stores that remember which events a consumer group handled.
    """

    async def seen(self, consumer_group: str, event_id: str) -> bool:
        """Return True if the group already handled the event."""
        ...

    async def mark_seen(self, consumer_group: str, event_id: str, outcome: HandlerOutcome) -> None:
        """
        Record that the group handled the event.

        Recording an event twice keeps the first outcome.
        """
        ...

    async def get_outcome(self, consumer_group: str, event_id: str) -> HandlerOutcome | None:
        """Return the recorded outcome, or None if the event was not handled."""
        ...


class InMemoryProcessedEventStore:
    """
    In-memory processed-event store.

    Entries older than ``ttl`` are treated as unseen and purged lazily. All
    data is lost when the process terminates.

    Example:
        >>> store = InMemoryProcessedEventStore(ttl=timedelta(days=7))
        >>> await store.mark_seen("payment-service", event_id, outcome)
        >>> await store.seen("payment-service", event_id)
        True
    """

    def __init__(
        self,
        ttl: timedelta | None = None,
        clock: Callable[[], datetime] = _now,
    ) -> None:
        if ttl is not None and ttl <= timedelta(0):
            raise ValueError("ttl must be positive")
        self._ttl = ttl
        self._clock = clock
        self._outcomes: dict[tuple[str, str], HandlerOutcome] = {}
        self._lock = asyncio.Lock()

    async def seen(self, consumer_group: str, event_id: str) -> bool:
        return await self.get_outcome(consumer_group, event_id) is not None

    async def mark_seen(self, consumer_group: str, event_id: str, outcome: HandlerOutcome) -> None:
        async with self._lock:
            key = (consumer_group, event_id)
            existing = self._outcomes.get(key)
            if existing is not None and not self._expired(existing):
                return
            self._outcomes[key] = outcome

    async def get_outcome(self, consumer_group: str, event_id: str) -> HandlerOutcome | None:
        async with self._lock:
            key = (consumer_group, event_id)
            outcome = self._outcomes.get(key)
            if outcome is None:
                return None
            if self._expired(outcome):
                del self._outcomes[key]
                return None
            return outcome

    async def purge_expired(self) -> int:
        """Remove expired entries. Returns the number removed."""
        async with self._lock:
            expired = [key for key, outcome in self._outcomes.items() if self._expired(outcome)]
            for key in expired:
                del self._outcomes[key]
            return len(expired)

    async def clear(self) -> None:
        async with self._lock:
            self._outcomes.clear()

    def __len__(self) -> int:
        return len(self._outcomes)

    def _expired(self, outcome: HandlerOutcome) -> bool:
        if self._ttl is None:
            return False
        return self._clock() - outcome.processed_at >= self._ttl


class SQLiteProcessedEventStore:
    """
    SQLite implementation of the processed-event store.

    Stores outcomes in the ``processed_events`` table, keyed by
    (consumer_group, event_id). Timestamps are stored as ISO 8601 text.

    Example:
        >>> async with aiosqlite.connect("choreography.db") as db:
        ...     store = SQLiteProcessedEventStore(db)
        ...     await store.initialize()
        ...     await store.mark_seen("shipping-service", message_id, outcome)
    """

    CREATE_TABLE_SQL = """
        CREATE TABLE IF NOT EXISTS processed_events (
            consumer_group TEXT NOT NULL,
            event_id TEXT NOT NULL,
            event_type TEXT NOT NULL,
            result TEXT,
            processed_at TEXT NOT NULL,
            PRIMARY KEY (consumer_group, event_id)
        )
    """

    def __init__(self, connection: aiosqlite.Connection) -> None:
        self._connection = connection

    @classmethod
    async def open(cls, database_path: str) -> SQLiteProcessedEventStore:
        """
        Connect to a database file and create the table.

        The caller owns the connection and must ``close()`` the store.

        Raises:
            SQLiteNotAvailableError: If aiosqlite is not installed
        """
        if not SQLITE_AVAILABLE:
            raise SQLiteNotAvailableError()
        connection = await aiosqlite.connect(database_path)
        store = cls(connection)
        await store.initialize()
        logger.info("Opened processed-event store at %s", database_path)
        return store

    async def close(self) -> None:
        await self._connection.close()

    async def initialize(self) -> None:
        """Create the table if it does not exist."""
        await self._connection.execute(self.CREATE_TABLE_SQL)
        await self._connection.commit()

    async def seen(self, consumer_group: str, event_id: str) -> bool:
        cursor = await self._connection.execute(
            """
            SELECT 1 FROM processed_events
            WHERE consumer_group = ? AND event_id = ?
            """,
            (consumer_group, event_id),
        )
        return await cursor.fetchone() is not None

    async def mark_seen(self, consumer_group: str, event_id: str, outcome: HandlerOutcome) -> None:
        await self._connection.execute(
            """
            INSERT INTO processed_events
                (consumer_group, event_id, event_type, result, processed_at)
            VALUES (?, ?, ?, ?, ?)
            ON CONFLICT (consumer_group, event_id) DO NOTHING
            """,
            (
                consumer_group,
                event_id,
                outcome.event_type,
                outcome.result,
                outcome.processed_at.isoformat(),
            ),
        )
        await self._connection.commit()

    async def get_outcome(self, consumer_group: str, event_id: str) -> HandlerOutcome | None:
        cursor = await self._connection.execute(
            """
            SELECT event_type, result, processed_at
            FROM processed_events
            WHERE consumer_group = ? AND event_id = ?
            """,
            (consumer_group, event_id),
        )
        row = await cursor.fetchone()
        if row is None:
            return None
        return HandlerOutcome(
            consumer_group=consumer_group,
            event_id=event_id,
            event_type=row[0],
            result=row[1],
            processed_at=datetime.fromisoformat(row[2]),
        )


class IdempotentConsumer:
    """
    Runs handlers at most once per event id for one consumer group.

    Concurrent deliveries of the same event id within the process are
    serialised by a per-id lock, so the second delivery observes the first
    one's record instead of racing it.

    Example:
        >>> guard = IdempotentConsumer(store, "notification-service")
        >>> outcome = await guard.handle(envelope, notify)
        >>> outcome.duplicate
        False
    """

    def __init__(
        self,
        store: ProcessedEventStore,
        consumer_group: str,
        *,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        self._store = store
        self._consumer_group = consumer_group
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._locks: dict[str, asyncio.Lock] = {}
        self._waiters: dict[str, int] = {}

    @property
    def consumer_group(self) -> str:
        return self._consumer_group

    async def handle(
        self,
        envelope: EventEnvelope,
        handler: Callable[[EventEnvelope], Awaitable[str | None]],
    ) -> HandlerOutcome:
        """Run ``handler(envelope)`` unless the envelope's event id was handled."""
        return await self.run(envelope.event_id, envelope.event_type, lambda: handler(envelope))

    async def run(
        self,
        event_id: str,
        event_type: str,
        operation: Callable[[], Awaitable[str | None]],
    ) -> HandlerOutcome:
        """
        Run ``operation`` unless ``event_id`` was already handled by this group.

        Args:
            event_id: Idempotency key
            event_type: Event type tag stored with the outcome
            operation: Side-effecting coroutine factory

        Returns:
            The new outcome, or the recorded one with ``duplicate=True``
        """
        with self._tracer.span(
            "choreography.consumer.handle",
            {
                ATTR_EVENT_ID: event_id,
                ATTR_EVENT_TYPE: event_type,
                ATTR_CONSUMER_GROUP: self._consumer_group,
            },
        ) as span:
            async with self._event_lock(event_id):
                recorded = await self._store.get_outcome(self._consumer_group, event_id)
                if recorded is not None:
                    if span is not None:
                        span.set_attribute(ATTR_DUPLICATE, True)
                    logger.info(
                        "Skipping already processed event %s",
                        event_id,
                        extra={
                            "event_id": event_id,
                            "event_type": event_type,
                            "consumer_group": self._consumer_group,
                        },
                    )
                    return dataclasses.replace(recorded, duplicate=True)

                result = await operation()
                outcome = HandlerOutcome(
                    consumer_group=self._consumer_group,
                    event_id=event_id,
                    event_type=event_type,
                    processed_at=_now(),
                    result=result,
                )
                await self._store.mark_seen(self._consumer_group, event_id, outcome)
                logger.debug(
                    "Processed event %s",
                    event_id,
                    extra={
                        "event_id": event_id,
                        "event_type": event_type,
                        "consumer_group": self._consumer_group,
                        "result": result,
                    },
                )
                return outcome

    @contextlib.asynccontextmanager
    async def _event_lock(self, event_id: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(event_id, asyncio.Lock())
        self._waiters[event_id] = self._waiters.get(event_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            remaining = self._waiters[event_id] - 1
            if remaining:
                self._waiters[event_id] = remaining
            else:
                del self._waiters[event_id]
                del self._locks[event_id]


__all__ = [
    "HandlerOutcome",
    "IdempotentConsumer",
    "InMemoryProcessedEventStore",
    "ProcessedEventStore",
    "SQLITE_AVAILABLE",
    "SQLiteNotAvailableError",
    "SQLiteProcessedEventStore",
]
