"""Unit tests for processed-event stores and the idempotent consumer."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncGenerator
from datetime import UTC, datetime, timedelta

import pytest
import pytest_asyncio

from choreography.consumers.idempotency import (
    SQLITE_AVAILABLE,
    HandlerOutcome,
    IdempotentConsumer,
    InMemoryProcessedEventStore,
    SQLiteProcessedEventStore,
)
from choreography.events import EventType
from choreography.exceptions import TransientError
from choreography.observability import MockTracer
from tests.fixtures import make_envelope, order_created_payload


def _outcome(event_id: str = "evt-1", result: str | None = "pay-1", **kwargs) -> HandlerOutcome:
    return HandlerOutcome(
        consumer_group=kwargs.get("consumer_group", "payment-service"),
        event_id=event_id,
        event_type="ORDER_CREATED",
        processed_at=kwargs.get("processed_at", datetime.now(UTC)),
        result=result,
    )


class _Clock:
    def __init__(self) -> None:
        self.now = datetime(2024, 5, 1, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now


# =============================================================================
# In-memory store
# =============================================================================


class TestInMemoryProcessedEventStore:
    @pytest.mark.asyncio
    async def test_unseen_by_default(self, store: InMemoryProcessedEventStore) -> None:
        assert not await store.seen("payment-service", "evt-1")
        assert await store.get_outcome("payment-service", "evt-1") is None

    @pytest.mark.asyncio
    async def test_mark_seen(self, store: InMemoryProcessedEventStore) -> None:
        """A recorded event is seen and its outcome is returned."""
        outcome = _outcome()
        await store.mark_seen("payment-service", "evt-1", outcome)
        assert await store.seen("payment-service", "evt-1")
        assert await store.get_outcome("payment-service", "evt-1") == outcome
        assert len(store) == 1

    @pytest.mark.asyncio
    async def test_groups_are_independent(self, store: InMemoryProcessedEventStore) -> None:
        """Two groups consuming the same event each handle it once."""
        await store.mark_seen("order-service", "evt-1", _outcome(consumer_group="order-service"))
        assert not await store.seen("notification-service", "evt-1")

    @pytest.mark.asyncio
    async def test_first_outcome_wins(self, store: InMemoryProcessedEventStore) -> None:
        """Recording an event twice keeps the first outcome."""
        await store.mark_seen("payment-service", "evt-1", _outcome(result="first"))
        await store.mark_seen("payment-service", "evt-1", _outcome(result="second"))
        outcome = await store.get_outcome("payment-service", "evt-1")
        assert outcome is not None
        assert outcome.result == "first"

    @pytest.mark.asyncio
    async def test_ttl_expiry(self) -> None:
        """Entries older than the ttl are treated as unseen."""
        clock = _Clock()
        store = InMemoryProcessedEventStore(ttl=timedelta(hours=1), clock=clock)
        await store.mark_seen("payment-service", "evt-1", _outcome(processed_at=clock.now))

        clock.now += timedelta(minutes=59)
        assert await store.seen("payment-service", "evt-1")

        clock.now += timedelta(minutes=1)
        assert not await store.seen("payment-service", "evt-1")
        assert len(store) == 0

    @pytest.mark.asyncio
    async def test_purge_expired(self) -> None:
        clock = _Clock()
        store = InMemoryProcessedEventStore(ttl=timedelta(hours=1), clock=clock)
        await store.mark_seen("g", "old", _outcome("old", processed_at=clock.now))
        clock.now += timedelta(hours=2)
        await store.mark_seen("g", "new", _outcome("new", processed_at=clock.now))

        assert await store.purge_expired() == 1
        assert await store.seen("g", "new")

    def test_ttl_must_be_positive(self) -> None:
        with pytest.raises(ValueError, match="ttl"):
            InMemoryProcessedEventStore(ttl=timedelta(0))

    @pytest.mark.asyncio
    async def test_clear(self, store: InMemoryProcessedEventStore) -> None:
        await store.mark_seen("g", "evt-1", _outcome())
        await store.clear()
        assert len(store) == 0


# =============================================================================
# SQLite store
# =============================================================================


@pytest_asyncio.fixture
async def sqlite_store() -> AsyncGenerator[SQLiteProcessedEventStore, None]:
    store = await SQLiteProcessedEventStore.open(":memory:")
    yield store
    await store.close()


@pytest.mark.skipif(not SQLITE_AVAILABLE, reason="aiosqlite not installed")
class TestSQLiteProcessedEventStore:
    @pytest.mark.asyncio
    async def test_mark_and_read_back(self, sqlite_store: SQLiteProcessedEventStore) -> None:
        """Outcomes survive a round trip through the table."""
        outcome = _outcome()
        await sqlite_store.mark_seen("payment-service", "evt-1", outcome)

        assert await sqlite_store.seen("payment-service", "evt-1")
        stored = await sqlite_store.get_outcome("payment-service", "evt-1")
        assert stored == outcome

    @pytest.mark.asyncio
    async def test_unknown_event(self, sqlite_store: SQLiteProcessedEventStore) -> None:
        assert not await sqlite_store.seen("payment-service", "evt-404")
        assert await sqlite_store.get_outcome("payment-service", "evt-404") is None

    @pytest.mark.asyncio
    async def test_first_outcome_wins(self, sqlite_store: SQLiteProcessedEventStore) -> None:
        """The primary key keeps the first record."""
        await sqlite_store.mark_seen("g", "evt-1", _outcome(result="first"))
        await sqlite_store.mark_seen("g", "evt-1", _outcome(result="second"))
        stored = await sqlite_store.get_outcome("g", "evt-1")
        assert stored is not None
        assert stored.result == "first"

    @pytest.mark.asyncio
    async def test_initialize_is_idempotent(self, sqlite_store: SQLiteProcessedEventStore) -> None:
        """Creating the table twice is harmless."""
        await sqlite_store.mark_seen("g", "evt-1", _outcome())
        await sqlite_store.initialize()
        assert await sqlite_store.seen("g", "evt-1")

    @pytest.mark.asyncio
    async def test_guard_over_sqlite(self, sqlite_store: SQLiteProcessedEventStore) -> None:
        """The idempotent consumer works on the SQLite store too."""
        guard = IdempotentConsumer(sqlite_store, "shipping-service", enable_tracing=False)
        calls: list[str] = []

        async def handler() -> str:
            calls.append("run")
            return "ship-1"

        await guard.run("msg-1", "SHIPPING_REQUEST", handler)
        duplicate = await guard.run("msg-1", "SHIPPING_REQUEST", handler)

        assert calls == ["run"]
        assert duplicate.duplicate
        assert duplicate.result == "ship-1"


# =============================================================================
# Idempotent consumer
# =============================================================================


class TestIdempotentConsumer:
    @pytest.mark.asyncio
    async def test_runs_once_per_event(self, store: InMemoryProcessedEventStore) -> None:
        """The second delivery of an event is skipped and reports the first result."""
        guard = IdempotentConsumer(store, "payment-service", enable_tracing=False)
        envelope = make_envelope(EventType.ORDER_CREATED, order_created_payload())
        calls: list[str] = []

        async def handler(env) -> str:
            calls.append(env.event_id)
            return "pay-1"

        first = await guard.handle(envelope, handler)
        second = await guard.handle(envelope, handler)

        assert calls == [envelope.event_id]
        assert not first.duplicate
        assert first.result == "pay-1"
        assert second.duplicate
        assert second.result == "pay-1"
        assert second.event_id == envelope.event_id

    @pytest.mark.asyncio
    async def test_failure_records_nothing(self, store: InMemoryProcessedEventStore) -> None:
        """A failed handler runs again on the next delivery."""
        guard = IdempotentConsumer(store, "payment-service", enable_tracing=False)
        attempts = 0

        async def flaky() -> str:
            nonlocal attempts
            attempts += 1
            if attempts == 1:
                raise TransientError("database unavailable")
            return "pay-1"

        with pytest.raises(TransientError):
            await guard.run("evt-1", "ORDER_CREATED", flaky)
        assert not await store.seen("payment-service", "evt-1")

        outcome = await guard.run("evt-1", "ORDER_CREATED", flaky)
        assert outcome.result == "pay-1"
        assert attempts == 2

    @pytest.mark.asyncio
    async def test_concurrent_duplicates_run_once(
        self, store: InMemoryProcessedEventStore
    ) -> None:
        """Concurrent deliveries of one event are serialised; only one runs."""
        guard = IdempotentConsumer(store, "payment-service", enable_tracing=False)
        calls = 0

        async def slow() -> str:
            nonlocal calls
            calls += 1
            await asyncio.sleep(0.01)
            return "pay-1"

        outcomes = await asyncio.gather(*(guard.run("evt-1", "ORDER_CREATED", slow) for _ in range(5)))

        assert calls == 1
        assert sum(1 for o in outcomes if not o.duplicate) == 1

    @pytest.mark.asyncio
    async def test_groups_do_not_share_records(self, store: InMemoryProcessedEventStore) -> None:
        """The same event is handled once by each group."""
        order_guard = IdempotentConsumer(store, "order-service", enable_tracing=False)
        notify_guard = IdempotentConsumer(store, "notification-service", enable_tracing=False)
        calls: list[str] = []

        async def record(name: str) -> str:
            calls.append(name)
            return name

        await order_guard.run("evt-1", "PAYMENT_COMPLETED", lambda: record("order"))
        await notify_guard.run("evt-1", "PAYMENT_COMPLETED", lambda: record("notification"))

        assert calls == ["order", "notification"]
        assert order_guard.consumer_group == "order-service"

    @pytest.mark.asyncio
    async def test_span_marks_duplicates(self, store: InMemoryProcessedEventStore) -> None:
        """Every delivery is traced."""
        tracer = MockTracer()
        guard = IdempotentConsumer(store, "payment-service", tracer=tracer)

        async def handler() -> None:
            return None

        await guard.run("evt-1", "ORDER_CREATED", handler)
        await guard.run("evt-1", "ORDER_CREATED", handler)

        assert tracer.span_names == ["choreography.consumer.handle"] * 2
        _, attributes = tracer.spans[0]
        assert attributes is not None
        assert attributes["choreography.consumer.group"] == "payment-service"
