"""
choreography - Event-driven order fulfillment without a central coordinator.

This library provides:
- Order, Payment, Notification and Shipping services reacting to each other's events
- Partitioned log brokers (in-memory and Kafka) and routed queue brokers
  (in-memory and RabbitMQ)
- Idempotent consumption with in-memory and SQLite processed-event stores
- Consumer retry with dead-lettering
- A retried, circuit-breaker protected payment call with a fallback result
- A FastAPI surface for orders and payments (optional ``api`` extra)
"""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("order-choreography")
except PackageNotFoundError:
    # Package not installed (running from source without install)
    __version__ = "0.0.0.dev0"

from choreography.bootstrap import (
    ChoreographySystem,
    Repositories,
    build_in_memory_system,
    build_system,
)

# Brokers
from choreography.bus import (
    KAFKA_AVAILABLE,
    RABBITMQ_AVAILABLE,
    InboundMessage,
    InMemoryLogBroker,
    InMemoryQueueBroker,
    KafkaBroker,
    KafkaBrokerConfig,
    MessageBroker,
    QueueTopology,
    RabbitMQBroker,
    RabbitMQBrokerConfig,
)

# Payment call
from choreography.clients import (
    HttpPaymentClient,
    LocalPaymentClient,
    PaymentClientConfig,
    PaymentResult,
    ResilientPaymentClient,
)
from choreography.config import ChoreographySettings

# Consumers
from choreography.consumers import (
    SQLITE_AVAILABLE,
    HandlerOutcome,
    IdempotentConsumer,
    InMemoryProcessedEventStore,
    RetryPolicy,
    SQLiteProcessedEventStore,
    with_retry,
)

# Domain
from choreography.domain import (
    Money,
    Notification,
    NotificationStatus,
    Order,
    OrderItem,
    OrderStatus,
    Payment,
    PaymentStatus,
    Shipment,
    ShipmentStatus,
)

# Events
from choreography.events import (
    EventEnvelope,
    EventPublisher,
    EventType,
    OrderCreatedPayload,
    PaymentCompletedPayload,
    ServiceName,
    ShipmentArrangedPayload,
    ShippingRequest,
    Topic,
    decode_envelope,
)

# Exceptions
from choreography.exceptions import (
    AggregateNotFoundError,
    BrokerError,
    BrokerNotAvailableError,
    ChoreographyError,
    CurrencyMismatchError,
    DomainValidationError,
    ErrorKind,
    IllegalStateTransitionError,
    InsufficientStockError,
    MalformedEnvelopeError,
    OrderAwaitingPaymentError,
    PaymentServiceError,
    TransientError,
)
from choreography.repositories import InMemoryRepository, Repository

# Resilience
from choreography.resilience import (
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitBreakerOpenError,
    CircuitState,
    RetryConfig,
    RetryError,
    retry_async,
)
from choreography.routing import ChoreographyRouter, Route

# Services
from choreography.services import (
    CreateOrderCommand,
    InMemoryProductCatalog,
    NotificationService,
    OrderService,
    PaymentService,
    ProductInfo,
    ShippingService,
)

__all__ = [
    "__version__",
    # Bootstrap
    "ChoreographySettings",
    "ChoreographySystem",
    "Repositories",
    "build_in_memory_system",
    "build_system",
    # Brokers
    "InMemoryLogBroker",
    "InMemoryQueueBroker",
    "InboundMessage",
    "KAFKA_AVAILABLE",
    "KafkaBroker",
    "KafkaBrokerConfig",
    "MessageBroker",
    "QueueTopology",
    "RABBITMQ_AVAILABLE",
    "RabbitMQBroker",
    "RabbitMQBrokerConfig",
    # Payment call
    "HttpPaymentClient",
    "LocalPaymentClient",
    "PaymentClientConfig",
    "PaymentResult",
    "ResilientPaymentClient",
    # Consumers
    "HandlerOutcome",
    "IdempotentConsumer",
    "InMemoryProcessedEventStore",
    "RetryPolicy",
    "SQLITE_AVAILABLE",
    "SQLiteProcessedEventStore",
    "with_retry",
    # Domain
    "Money",
    "Notification",
    "NotificationStatus",
    "Order",
    "OrderItem",
    "OrderStatus",
    "Payment",
    "PaymentStatus",
    "Shipment",
    "ShipmentStatus",
    # Events
    "EventEnvelope",
    "EventPublisher",
    "EventType",
    "OrderCreatedPayload",
    "PaymentCompletedPayload",
    "ServiceName",
    "ShipmentArrangedPayload",
    "ShippingRequest",
    "Topic",
    "decode_envelope",
    # Exceptions
    "AggregateNotFoundError",
    "BrokerError",
    "BrokerNotAvailableError",
    "ChoreographyError",
    "CurrencyMismatchError",
    "DomainValidationError",
    "ErrorKind",
    "IllegalStateTransitionError",
    "InsufficientStockError",
    "MalformedEnvelopeError",
    "OrderAwaitingPaymentError",
    "PaymentServiceError",
    "TransientError",
    # Repositories
    "InMemoryRepository",
    "Repository",
    # Resilience
    "CircuitBreaker",
    "CircuitBreakerConfig",
    "CircuitBreakerOpenError",
    "CircuitState",
    "RetryConfig",
    "RetryError",
    "retry_async",
    # Routing
    "ChoreographyRouter",
    "Route",
    # Services
    "CreateOrderCommand",
    "InMemoryProductCatalog",
    "NotificationService",
    "OrderService",
    "PaymentService",
    "ProductInfo",
    "ShippingService",
]
