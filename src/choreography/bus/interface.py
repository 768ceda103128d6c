"""
Broker transport abstraction.

Routers only ever see MessageBroker: publish bytes to a destination, and
subscribe an async handler to a destination. A handler returning normally
acknowledges the message; a handler raising leaves the message to the
broker's redelivery or dead-letter mechanism.

Two broker styles implement it:
- log brokers (InMemoryLogBroker, KafkaBroker): destinations are topics,
  messages are partitioned by key and ordered within a partition
- queue brokers (InMemoryQueueBroker, RabbitMQBroker): publishing targets a
  routing key, subscribing targets a queue bound to it
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from types import TracebackType
from typing import ClassVar


@dataclass(frozen=True)
class InboundMessage:
    """
    A message handed to a subscriber.

    Attributes:
        destination: Topic or queue the message was consumed from
        body: Raw message value
        key: Partition key (log brokers) or routing key (queue brokers)
        headers: String headers attached by the producer
        message_id: Broker-level message id, if the producer set one
        partition: Partition number (log brokers only)
        offset: Position within the partition (log brokers only)
        delivery_count: 1 on first delivery, incremented on redelivery
    """

    destination: str
    body: bytes
    key: str | None = None
    headers: dict[str, str] = field(default_factory=dict)
    message_id: str | None = None
    partition: int | None = None
    offset: int | None = None
    delivery_count: int = 1

    def header(self, name: str, default: str | None = None) -> str | None:
        return self.headers.get(name, default)


MessageHandler = Callable[[InboundMessage], Awaitable[None]]


@dataclass(frozen=True)
class QueueTopology:
    """
    Exchange, queue and dead-letter layout of a queue broker.

    The live queue is declared with x-dead-letter-exchange and
    x-dead-letter-routing-key pointing at the DLQ exchange, so a rejected
    message lands in the DLQ queue without the consumer republishing it.
    """

    exchange: str = "shipping.exchange"
    exchange_type: str = "topic"
    routing_key: str = "shipping.notification"
    queue: str = "shipping.queue"
    dlq_exchange: str = "shipping.exchange.dlq"
    dlq_routing_key: str = "shipping.dlq"
    dlq_queue: str = "shipping.queue.dlq"

    def __post_init__(self) -> None:
        names = ("exchange", "routing_key", "queue", "dlq_exchange", "dlq_routing_key", "dlq_queue")
        for name in names:
            if not getattr(self, name).strip():
                raise ValueError(f"{name} must not be blank")
        if self.exchange_type not in {"topic", "direct", "fanout"}:
            raise ValueError(
                f"Invalid exchange_type: {self.exchange_type}. Must be one of: topic, direct, fanout"
            )

    def dead_letter_arguments(self) -> dict[str, str]:
        return {
            "x-dead-letter-exchange": self.dlq_exchange,
            "x-dead-letter-routing-key": self.dlq_routing_key,
        }


class MessageBroker(ABC):
    """
    Abstract publish/subscribe transport.

    Lifecycle: subscribe handlers, ``start()`` to begin consuming, ``stop()``
    to stop pulling new messages and let in-flight handlers finish. Brokers
    are also async context managers.
    """

    system: ClassVar[str] = "unknown"

    @abstractmethod
    async def publish(
        self,
        destination: str,
        body: bytes,
        *,
        key: str | None = None,
        headers: dict[str, str] | None = None,
        message_id: str | None = None,
    ) -> None:
        """
        Publish a message.

        Args:
            destination: Topic (log brokers) or routing key (queue brokers)
            body: Message value
            key: Partition key; all messages with the same key keep their order
            headers: String headers
            message_id: Broker-level message id

        Raises:
            BrokerError: If the broker rejects the message
        """
        pass

    @abstractmethod
    def subscribe(
        self,
        destination: str,
        handler: MessageHandler,
        *,
        group: str | None = None,
    ) -> None:
        """
        Register a handler for a destination.

        Args:
            destination: Topic (log brokers) or queue name (queue brokers)
            handler: Async callable invoked once per delivery
            group: Consumer group. Every group receives every message of a
                topic; ignored by queue brokers, where consumers compete.
        """
        pass

    @abstractmethod
    def dead_letter_destination(self, destination: str) -> str:
        """Name of the dead-letter destination for a live destination."""
        pass

    async def publish_dead_letter(
        self,
        message: InboundMessage,
        body: bytes,
        headers: dict[str, str],
    ) -> None:
        """
        Move a failed message to its dead-letter destination.

        The default publishes to ``dead_letter_destination(message.destination)``
        with the original key and message id.
        """
        await self.publish(
            self.dead_letter_destination(message.destination),
            body,
            key=message.key,
            headers=headers,
            message_id=message.message_id,
        )

    @abstractmethod
    async def start(self) -> None:
        """Connect if needed and start consuming subscribed destinations."""
        pass

    @abstractmethod
    async def stop(self, timeout: float | None = None) -> None:
        """
        Stop consuming and release resources.

        Idle consumers stop immediately. Handlers already running are given
        up to ``timeout`` seconds to finish before they are cancelled.
        """
        pass

    async def __aenter__(self) -> MessageBroker:
        await self.start()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.stop()


__all__ = [
    "InboundMessage",
    "MessageBroker",
    "MessageHandler",
    "QueueTopology",
]
