"""Message broker implementations.

Available Implementations:
- InMemoryLogBroker: partitioned in-process log (development/testing)
- InMemoryQueueBroker: in-process exchange and queues with dead-lettering
- KafkaBroker: Apache Kafka via aiokafka (requires the ``kafka`` extra)
- RabbitMQBroker: RabbitMQ via aio-pika (requires the ``rabbitmq`` extra)

Example:
    >>> from choreography.bus import InMemoryLogBroker
    >>>
    >>> broker = InMemoryLogBroker()
    >>> broker.subscribe("order.created", handle, group="payment-service")
    >>> async with broker:
    ...     await broker.publish("order.created", body, key="ord-1")
"""

from choreography.bus.interface import (
    InboundMessage,
    MessageBroker,
    MessageHandler,
    QueueTopology,
)

# Kafka broker - conditionally usable based on aiokafka availability
from choreography.bus.kafka import (
    KAFKA_AVAILABLE,
    KafkaBroker,
    KafkaBrokerConfig,
    KafkaBrokerStats,
)
from choreography.bus.memory import (
    DEFAULT_GROUP,
    InMemoryLogBroker,
    InMemoryQueueBroker,
    partition_for,
)

# RabbitMQ broker - conditionally usable based on aio-pika availability
from choreography.bus.rabbitmq import (
    RABBITMQ_AVAILABLE,
    RabbitMQBroker,
    RabbitMQBrokerConfig,
    RabbitMQBrokerStats,
)
from choreography.bus.workers import ConsumerTasks

__all__ = [
    "ConsumerTasks",
    "DEFAULT_GROUP",
    "InMemoryLogBroker",
    "InMemoryQueueBroker",
    "InboundMessage",
    "KAFKA_AVAILABLE",
    "KafkaBroker",
    "KafkaBrokerConfig",
    "KafkaBrokerStats",
    "MessageBroker",
    "MessageHandler",
    "QueueTopology",
    "RABBITMQ_AVAILABLE",
    "RabbitMQBroker",
    "RabbitMQBrokerConfig",
    "RabbitMQBrokerStats",
    "partition_for",
]
