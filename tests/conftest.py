"""
Shared pytest fixtures for the choreography tests.

This module provides:
- Repositories for each aggregate (order_repo, payment_repo, ...)
- A product catalog holding prod-1 at 29.99 USD (catalog)
- Brokers (log_broker, queue_broker, recording_broker)
- A processed-event store (store)
- A sleep replacement that never waits (sleep)
"""

from __future__ import annotations

from collections.abc import AsyncGenerator

import pytest
import pytest_asyncio

from choreography.bus.memory import InMemoryLogBroker, InMemoryQueueBroker
from choreography.consumers.idempotency import InMemoryProcessedEventStore
from choreography.domain.notification import Notification
from choreography.domain.order import Order
from choreography.domain.payment import Payment
from choreography.domain.shipment import Shipment
from choreography.repositories import InMemoryRepository
from choreography.services.catalog import InMemoryProductCatalog
from tests.fixtures import RecordingBroker, SleepRecorder, make_catalog

# ============================================================================
# Repositories
# ============================================================================


@pytest.fixture
def order_repo() -> InMemoryRepository[Order]:
    return InMemoryRepository(Order, enable_tracing=False)


@pytest.fixture
def payment_repo() -> InMemoryRepository[Payment]:
    return InMemoryRepository(Payment, enable_tracing=False)


@pytest.fixture
def notification_repo() -> InMemoryRepository[Notification]:
    return InMemoryRepository(Notification, enable_tracing=False)


@pytest.fixture
def shipment_repo() -> InMemoryRepository[Shipment]:
    return InMemoryRepository(Shipment, enable_tracing=False)


@pytest.fixture
def catalog() -> InMemoryProductCatalog:
    """Catalog with prod-1 priced at 29.99 USD and 100 units in stock."""
    return make_catalog()


# ============================================================================
# Messaging
# ============================================================================


@pytest.fixture
def recording_broker() -> RecordingBroker:
    return RecordingBroker()


@pytest_asyncio.fixture
async def log_broker() -> AsyncGenerator[InMemoryLogBroker, None]:
    broker = InMemoryLogBroker(partitions=3, enable_tracing=False)
    yield broker
    await broker.stop(timeout=1.0)


@pytest_asyncio.fixture
async def queue_broker() -> AsyncGenerator[InMemoryQueueBroker, None]:
    broker = InMemoryQueueBroker(enable_tracing=False)
    yield broker
    await broker.stop(timeout=1.0)


@pytest.fixture
def store() -> InMemoryProcessedEventStore:
    return InMemoryProcessedEventStore()


@pytest.fixture
def sleep() -> SleepRecorder:
    """Sleep replacement recording the requested delays."""
    return SleepRecorder()
