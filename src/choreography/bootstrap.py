"""
Wiring of the four services into a runnable system.

There is no container: every collaborator is constructed here and passed to
its consumer explicitly.

Example:
    >>> system = build_in_memory_system(catalog=catalog)
    >>> async with system:
    ...     order = await system.order_service.create_order(command)
    ...     await system.wait_until_idle()
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

from choreography.bus.interface import MessageBroker, QueueTopology
from choreography.bus.kafka import KafkaBroker
from choreography.bus.memory import InMemoryLogBroker, InMemoryQueueBroker
from choreography.bus.rabbitmq import RabbitMQBroker
from choreography.clients.payment import (
    HttpPaymentClient,
    LocalPaymentClient,
    PaymentPort,
    ResilientPaymentClient,
)
from choreography.config import ChoreographySettings
from choreography.consumers.idempotency import (
    InMemoryProcessedEventStore,
    ProcessedEventStore,
    SQLiteProcessedEventStore,
)
from choreography.consumers.retry import RetryPolicy
from choreography.domain.notification import Notification
from choreography.domain.order import Order
from choreography.domain.payment import Payment
from choreography.domain.shipment import Shipment
from choreography.events.publisher import EventPublisher
from choreography.events.types import ServiceName
from choreography.repositories import InMemoryRepository
from choreography.resilience import CircuitBreaker, RetryConfig
from choreography.routing import (
    ChoreographyRouter,
    notification_router,
    order_router,
    payment_router,
    shipping_router,
)
from choreography.services import (
    InMemoryProductCatalog,
    NotificationService,
    OrderService,
    PaymentService,
    ProductCatalog,
    ShippingService,
)

logger = logging.getLogger(__name__)

PAYMENT_CIRCUIT_NAME = "payment-service"


@dataclass
class Repositories:
    orders: InMemoryRepository[Order] = field(default_factory=lambda: InMemoryRepository(Order))
    payments: InMemoryRepository[Payment] = field(
        default_factory=lambda: InMemoryRepository(Payment)
    )
    notifications: InMemoryRepository[Notification] = field(
        default_factory=lambda: InMemoryRepository(Notification)
    )
    shipments: InMemoryRepository[Shipment] = field(
        default_factory=lambda: InMemoryRepository(Shipment)
    )


@dataclass
class ChoreographySystem:
    """
    A fully wired set of services, routers and brokers.

    ``start()`` registers every router and starts the brokers; ``stop()``
    drains in-flight handlers and releases broker and client resources.
    """

    log_broker: MessageBroker
    queue_broker: MessageBroker
    repositories: Repositories
    catalog: ProductCatalog
    payment_client: PaymentPort
    order_service: OrderService
    payment_service: PaymentService
    notification_service: NotificationService
    shipping_service: ShippingService
    routers: list[ChoreographyRouter]
    store: ProcessedEventStore
    circuit_breaker: CircuitBreaker
    _closers: list[Callable[[], Awaitable[Any]]] = field(default_factory=list)
    _started: bool = False

    @property
    def is_started(self) -> bool:
        return self._started

    async def start(self) -> None:
        if self._started:
            logger.warning("Choreography system already started")
            return
        for router in self.routers:
            if not router.is_registered:
                router.register()
        await self.log_broker.start()
        if self.queue_broker is not self.log_broker:
            await self.queue_broker.start()
        self._started = True
        logger.info(
            "Choreography system started",
            extra={
                "log_broker": self.log_broker.system,
                "queue_broker": self.queue_broker.system,
                "routers": [router.service_name for router in self.routers],
            },
        )

    async def stop(self, timeout: float | None = None) -> None:
        if not self._started:
            return
        await self.log_broker.stop(timeout)
        if self.queue_broker is not self.log_broker:
            await self.queue_broker.stop(timeout)
        for close in reversed(self._closers):
            await close()
        self._closers.clear()
        self._started = False
        logger.info("Choreography system stopped")

    async def wait_until_idle(self, timeout: float = 5.0) -> None:
        """
        Wait until the in-memory brokers have no undelivered messages.

        Alternates between the two brokers because handling a message on one
        may publish to the other.
        """
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        brokers = [
            b
            for b in (self.log_broker, self.queue_broker)
            if isinstance(b, InMemoryLogBroker | InMemoryQueueBroker)
        ]
        while True:
            for broker in brokers:
                await broker.wait_until_idle(max(0.0, deadline - loop.time()))
            if all(b.pending_messages == 0 for b in brokers):
                return
            if loop.time() >= deadline:
                raise TimeoutError("brokers did not become idle")

    async def __aenter__(self) -> ChoreographySystem:
        await self.start()
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.stop()


def _wire(
    *,
    log_broker: MessageBroker,
    queue_broker: MessageBroker,
    catalog: ProductCatalog,
    store: ProcessedEventStore,
    retry_policy: RetryPolicy | None,
    payment_port: PaymentPort | None,
    circuit_breaker: CircuitBreaker,
    payment_retry_config: RetryConfig | None,
    repositories: Repositories | None,
    sleep: Callable[[float], Awaitable[None]] | None,
) -> ChoreographySystem:
    repositories = repositories or Repositories()

    payment_service = PaymentService(
        repositories.payments,
        EventPublisher(log_broker, ServiceName.PAYMENT),
    )
    port = payment_port or LocalPaymentClient(payment_service)
    payment_client = ResilientPaymentClient(
        port,
        circuit_breaker,
        payment_retry_config,
        sleep=sleep or asyncio.sleep,
    )
    order_service = OrderService(
        repositories.orders,
        catalog,
        payment_client,
        EventPublisher(log_broker, ServiceName.ORDER),
    )
    notification_service = NotificationService(repositories.notifications, queue_broker)
    shipping_service = ShippingService(
        repositories.shipments,
        EventPublisher(log_broker, ServiceName.SHIPPING),
    )

    routers = [
        order_router(order_service, log_broker, store, retry_policy, sleep=sleep),
        payment_router(payment_service, log_broker, store, retry_policy, sleep=sleep),
        notification_router(notification_service, log_broker, store, retry_policy, sleep=sleep),
        shipping_router(shipping_service, queue_broker, store, retry_policy, sleep=sleep),
    ]

    return ChoreographySystem(
        log_broker=log_broker,
        queue_broker=queue_broker,
        repositories=repositories,
        catalog=catalog,
        payment_client=payment_client,
        order_service=order_service,
        payment_service=payment_service,
        notification_service=notification_service,
        shipping_service=shipping_service,
        routers=routers,
        store=store,
        circuit_breaker=circuit_breaker,
    )


def build_in_memory_system(
    *,
    catalog: ProductCatalog | None = None,
    store: ProcessedEventStore | None = None,
    retry_policy: RetryPolicy | None = None,
    payment_port: PaymentPort | None = None,
    circuit_breaker: CircuitBreaker | None = None,
    payment_retry_config: RetryConfig | None = None,
    repositories: Repositories | None = None,
    partitions: int = 3,
    sleep: Callable[[float], Awaitable[None]] | None = None,
    enable_tracing: bool = False,
) -> ChoreographySystem:
    """
    Build the whole system on in-memory brokers.

    Args:
        catalog: Product catalog (empty if None)
        store: Processed-event store shared by all routers (in-memory if None)
        retry_policy: Consumer retry policy
        payment_port: Payment port behind the resilient client (defaults to
            the in-process payment service)
        circuit_breaker: Breaker of the payment call
        payment_retry_config: Retry config of the payment call
        repositories: Repositories to use (fresh in-memory ones if None)
        partitions: Partitions per topic of the log broker
        sleep: Sleep used by retries, injectable for tests
        enable_tracing: Whether brokers create spans
    """
    log_broker = InMemoryLogBroker(partitions=partitions, enable_tracing=enable_tracing)
    queue_broker = InMemoryQueueBroker([QueueTopology()], enable_tracing=enable_tracing)
    return _wire(
        log_broker=log_broker,
        queue_broker=queue_broker,
        catalog=catalog or InMemoryProductCatalog(),
        store=store or InMemoryProcessedEventStore(),
        retry_policy=retry_policy,
        payment_port=payment_port,
        circuit_breaker=circuit_breaker or CircuitBreaker(PAYMENT_CIRCUIT_NAME),
        payment_retry_config=payment_retry_config,
        repositories=repositories,
        sleep=sleep,
    )


async def build_system(
    settings: ChoreographySettings | None = None,
    *,
    catalog: ProductCatalog | None = None,
) -> ChoreographySystem:
    """
    Build the system described by settings.

    Kafka, RabbitMQ, the SQLite processed-event store and the HTTP payment
    client are used when the settings select them; everything else stays in
    memory.

    Raises:
        BrokerNotAvailableError: If a selected broker's client library is missing
        SQLiteNotAvailableError: If a SQLite store is configured without aiosqlite
    """
    settings = settings or ChoreographySettings.from_env()
    closers: list[Callable[[], Awaitable[Any]]] = []

    log_broker: MessageBroker
    if settings.log_broker == "kafka":
        log_broker = KafkaBroker(settings.kafka_config())
    else:
        log_broker = InMemoryLogBroker(enable_tracing=settings.enable_tracing)

    queue_broker: MessageBroker
    if settings.queue_broker == "rabbitmq":
        queue_broker = RabbitMQBroker(settings.rabbitmq_config())
    else:
        queue_broker = InMemoryQueueBroker(enable_tracing=settings.enable_tracing)

    store: ProcessedEventStore
    if settings.processed_events_db:
        sqlite_store = await SQLiteProcessedEventStore.open(settings.processed_events_db)
        closers.append(sqlite_store.close)
        store = sqlite_store
    else:
        store = InMemoryProcessedEventStore()

    payment_port: PaymentPort | None = None
    client_config = settings.payment_client_config()
    if client_config is not None:
        http_client = HttpPaymentClient(client_config, enable_tracing=settings.enable_tracing)
        closers.append(http_client.aclose)
        payment_port = http_client

    system = _wire(
        log_broker=log_broker,
        queue_broker=queue_broker,
        catalog=catalog or InMemoryProductCatalog(),
        store=store,
        retry_policy=settings.retry_policy(),
        payment_port=payment_port,
        circuit_breaker=CircuitBreaker(PAYMENT_CIRCUIT_NAME, settings.circuit_breaker_config()),
        payment_retry_config=settings.payment_retry_config(),
        repositories=None,
        sleep=None,
    )
    system._closers.extend(closers)
    logger.info(
        "Built choreography system",
        extra={
            "log_broker": settings.log_broker,
            "queue_broker": settings.queue_broker,
            "payment": client_config.base_url if client_config else "local",
            "processed_events_db": settings.processed_events_db,
        },
    )
    return system


__all__ = [
    "ChoreographySystem",
    "PAYMENT_CIRCUIT_NAME",
    "Repositories",
    "build_in_memory_system",
    "build_system",
]
