"""Kafka broker implementation using aiokafka.

Topics are the event destinations (``order.created``, ``payment.completed``,
``shipment.arranged``), messages are keyed by order id so that all events of
one order land on the same partition, and each service consumes through its
own consumer group.

Delivery Guarantees:
    This implementation provides **at-least-once** delivery. Auto-commit is
    disabled; the offset of a message is committed only after its handler
    returns. When a handler raises, the consumer seeks back to the message so
    it is delivered again. Handlers must therefore be idempotent.

Example:
    >>> from choreography.bus.kafka import KafkaBroker, KafkaBrokerConfig
    >>>
    >>> config = KafkaBrokerConfig(
    ...     bootstrap_servers="localhost:9092",
    ...     consumer_group="payment-service",
    ... )
    >>> broker = KafkaBroker(config)
    >>> broker.subscribe("order.created", handle_order_created)
    >>> async with broker:
    ...     await broker.publish("payment.completed", body, key="ord-1")
"""

from __future__ import annotations

import asyncio
import logging
import socket
import uuid
from collections import defaultdict
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from choreography.bus.interface import (
    InboundMessage,
    MessageBroker,
    MessageHandler,
)
from choreography.bus.workers import ConsumerTasks
from choreography.exceptions import BrokerError, BrokerNotAvailableError
from choreography.observability import (
    ATTR_CONSUMER_GROUP,
    ATTR_MESSAGING_DESTINATION,
    ATTR_MESSAGING_OPERATION,
    ATTR_MESSAGING_SYSTEM,
    SpanKindEnum,
    Tracer,
    create_tracer,
    inject_trace_context,
)

logger = logging.getLogger(__name__)

# Optional aiokafka import - fail gracefully if not installed
try:
    from aiokafka import AIOKafkaConsumer, AIOKafkaProducer, TopicPartition
    from aiokafka.errors import KafkaError

    KAFKA_AVAILABLE = True
except ImportError:
    KAFKA_AVAILABLE = False
    AIOKafkaProducer = None
    AIOKafkaConsumer = None
    TopicPartition = None
    KafkaError = Exception


@dataclass
class KafkaBrokerConfig:
    """Configuration for the Kafka broker.

    Attributes:
        bootstrap_servers: Kafka broker addresses (comma-separated).
        consumer_group: Default consumer group, normally the service name.
            ``subscribe(..., group=...)`` can name another group; each group
            gets its own consumer.
        consumer_name: Client id for this instance. Auto-generated from
            hostname and UUID if not provided.
        acks: Producer acknowledgment level ("0", "1" or "all").
        compression_type: Producer compression (None, gzip, snappy, lz4, zstd).
        linger_ms: Time to wait for additional messages before sending a batch.
        auto_offset_reset: Where a new group starts: "earliest" or "latest".
        session_timeout_ms: Consumer session timeout in milliseconds.
        heartbeat_interval_ms: Consumer heartbeat interval in milliseconds.
        max_poll_interval_ms: Maximum time between polls before the consumer
            is considered failed.
        redelivery_delay: Seconds to wait before redelivering a message whose
            handler raised.
        dlq_topic_suffix: Suffix appended to a topic to name its DLQ topic.
        security_protocol: PLAINTEXT, SSL, SASL_PLAINTEXT or SASL_SSL.
        sasl_mechanism: PLAIN, SCRAM-SHA-256 or SCRAM-SHA-512.
        sasl_username: Username for SASL authentication.
        sasl_password: Password for SASL authentication.
        ssl_cafile: Path to CA certificate file.
        enable_tracing: Enable OpenTelemetry tracing if available.
        shutdown_timeout: Seconds to wait for in-flight handlers on stop.

    Raises:
        ValueError: If the security configuration is inconsistent.
    """

    # Connection
    bootstrap_servers: str = "localhost:9092"
    consumer_group: str = "default"
    consumer_name: str | None = None

    # Producer settings
    acks: str = "all"
    compression_type: str | None = None
    linger_ms: int = 5

    # Consumer settings
    auto_offset_reset: str = "earliest"
    session_timeout_ms: int = 30000
    heartbeat_interval_ms: int = 10000
    max_poll_interval_ms: int = 300000
    redelivery_delay: float = 1.0

    # DLQ settings
    dlq_topic_suffix: str = ".dlq"

    # Security
    security_protocol: str = "PLAINTEXT"
    sasl_mechanism: str | None = None
    sasl_username: str | None = None
    sasl_password: str | None = None
    ssl_cafile: str | None = None

    # Observability
    enable_tracing: bool = True

    # Shutdown
    shutdown_timeout: float = 30.0

    def __post_init__(self) -> None:
        if self.consumer_name is None:
            hostname = socket.gethostname()
            unique_id = uuid.uuid4().hex[:8]
            self.consumer_name = f"{hostname}-{unique_id}"

        if self.auto_offset_reset not in ("earliest", "latest"):
            raise ValueError(
                f"Invalid auto_offset_reset: {self.auto_offset_reset}. "
                "Must be 'earliest' or 'latest'"
            )
        if self.redelivery_delay < 0:
            raise ValueError("redelivery_delay must be non-negative")

        self._validate_security_config()

    def _validate_security_config(self) -> None:
        valid_protocols = {"PLAINTEXT", "SSL", "SASL_PLAINTEXT", "SASL_SSL"}
        if self.security_protocol not in valid_protocols:
            raise ValueError(
                f"Invalid security_protocol: {self.security_protocol}. "
                f"Must be one of: {valid_protocols}"
            )

        if self.security_protocol.startswith("SASL_"):
            valid_mechanisms = {"PLAIN", "SCRAM-SHA-256", "SCRAM-SHA-512"}
            if not self.sasl_mechanism:
                raise ValueError(f"sasl_mechanism required for {self.security_protocol}")
            if self.sasl_mechanism not in valid_mechanisms:
                raise ValueError(
                    f"Invalid sasl_mechanism: {self.sasl_mechanism}. "
                    f"Must be one of: {valid_mechanisms}"
                )
            if not self.sasl_username or not self.sasl_password:
                raise ValueError("sasl_username and sasl_password required for SASL authentication")

        if self.security_protocol == "SASL_PLAINTEXT":
            logger.warning("Using SASL without SSL - credentials sent in plain text")

    def dlq_topic_name(self, topic: str) -> str:
        return f"{topic}{self.dlq_topic_suffix}"

    def get_producer_config(self) -> dict[str, Any]:
        """Get aiokafka producer configuration dict."""
        config: dict[str, Any] = {
            "bootstrap_servers": self.bootstrap_servers,
            "client_id": self.consumer_name,
            "acks": self.acks,
            "compression_type": self.compression_type,
            "linger_ms": self.linger_ms,
        }
        self._add_security_config(config)
        return config

    def get_consumer_config(self, group: str | None = None) -> dict[str, Any]:
        """Get aiokafka consumer configuration dict for a consumer group."""
        config: dict[str, Any] = {
            "bootstrap_servers": self.bootstrap_servers,
            "group_id": group or self.consumer_group,
            "client_id": self.consumer_name,
            "auto_offset_reset": self.auto_offset_reset,
            "session_timeout_ms": self.session_timeout_ms,
            "heartbeat_interval_ms": self.heartbeat_interval_ms,
            "max_poll_interval_ms": self.max_poll_interval_ms,
            "enable_auto_commit": False,  # Manual commit for at-least-once
        }
        self._add_security_config(config)
        return config

    def _add_security_config(self, config: dict[str, Any]) -> None:
        config["security_protocol"] = self.security_protocol
        if self.sasl_mechanism:
            config["sasl_mechanism"] = self.sasl_mechanism
        if self.sasl_username:
            config["sasl_plain_username"] = self.sasl_username
        if self.sasl_password:
            config["sasl_plain_password"] = self.sasl_password
        if self.ssl_cafile:
            config["ssl_cafile"] = self.ssl_cafile

    def get_sanitized_config(self) -> dict[str, Any]:
        """Get configuration with sensitive values redacted, for logging."""
        return {
            "bootstrap_servers": self.bootstrap_servers,
            "consumer_group": self.consumer_group,
            "consumer_name": self.consumer_name,
            "security_protocol": self.security_protocol,
            "sasl_mechanism": self.sasl_mechanism,
            "sasl_username": self.sasl_username,
            "sasl_password": "***" if self.sasl_password else None,
            "ssl_cafile": self.ssl_cafile,
            "enable_tracing": self.enable_tracing,
        }


@dataclass
class KafkaBrokerStats:
    """Counters for Kafka broker operations."""

    messages_published: int = 0
    messages_consumed: int = 0
    messages_committed: int = 0
    handler_errors: int = 0
    publish_errors: int = 0
    connected_at: datetime | None = None
    last_publish_at: datetime | None = None
    last_consume_at: datetime | None = None

    def get_stats_dict(self) -> dict[str, Any]:
        return {
            "messages_published": self.messages_published,
            "messages_consumed": self.messages_consumed,
            "messages_committed": self.messages_committed,
            "handler_errors": self.handler_errors,
            "publish_errors": self.publish_errors,
            "connected_at": self.connected_at.isoformat() if self.connected_at else None,
            "last_publish_at": self.last_publish_at.isoformat() if self.last_publish_at else None,
            "last_consume_at": self.last_consume_at.isoformat() if self.last_consume_at else None,
        }


class KafkaBroker(MessageBroker):
    """
    Message broker backed by Apache Kafka.

    One producer is shared by all publishes. ``start()`` creates one consumer
    per consumer group, subscribed to every topic registered for that group,
    and runs each in a background task. Within a partition messages are
    handled sequentially.
    """

    system = "kafka"

    def __init__(
        self,
        config: KafkaBrokerConfig | None = None,
        *,
        tracer: Tracer | None = None,
    ) -> None:
        if not KAFKA_AVAILABLE:
            raise BrokerNotAvailableError("aiokafka", "kafka")

        self._config = config or KafkaBrokerConfig()
        self._tracer = tracer or create_tracer(__name__, self._config.enable_tracing)
        self._producer: Any = None
        self._consumers: dict[str, Any] = {}
        self._handlers: dict[str, dict[str, MessageHandler]] = defaultdict(dict)
        self._tasks = ConsumerTasks("kafka")
        self._connected = False
        self._consuming = False
        self._stats = KafkaBrokerStats()

    @property
    def config(self) -> KafkaBrokerConfig:
        return self._config

    @property
    def stats(self) -> KafkaBrokerStats:
        return self._stats

    @property
    def is_connected(self) -> bool:
        return self._connected

    @property
    def is_consuming(self) -> bool:
        return self._consuming

    def get_stats_dict(self) -> dict[str, Any]:
        return self._stats.get_stats_dict()

    # =========================================================================
    # Connection Management
    # =========================================================================

    async def connect(self) -> None:
        """Create and start the producer.

        Raises:
            KafkaError: If connection to Kafka fails.
        """
        if self._connected:
            logger.warning("KafkaBroker already connected")
            return

        logger.info("Connecting to Kafka", extra=self._config.get_sanitized_config())
        try:
            self._producer = AIOKafkaProducer(**self._config.get_producer_config())
            await self._producer.start()
        except Exception as e:
            logger.error("Failed to connect to Kafka", extra={"error": str(e)}, exc_info=True)
            await self._cleanup_connections()
            raise

        self._connected = True
        self._stats.connected_at = datetime.now(UTC)
        logger.info("Connected to Kafka", extra={"bootstrap_servers": self._config.bootstrap_servers})

    async def disconnect(self) -> None:
        """Stop consumers and producer. Safe to call multiple times."""
        if not self._connected:
            logger.debug("KafkaBroker not connected, nothing to disconnect")
            return
        await self._cleanup_connections()
        self._connected = False
        logger.info("Disconnected from Kafka")

    async def _cleanup_connections(self) -> None:
        for group, consumer in list(self._consumers.items()):
            try:
                await consumer.stop()
            except Exception as e:
                logger.warning(f"Error stopping consumer for group {group}: {e}")
        self._consumers.clear()

        if self._producer:
            try:
                await self._producer.stop()
            except Exception as e:
                logger.warning(f"Error stopping producer: {e}")
            self._producer = None

    # =========================================================================
    # Publishing
    # =========================================================================

    async def publish(
        self,
        destination: str,
        body: bytes,
        *,
        key: str | None = None,
        headers: dict[str, str] | None = None,
        message_id: str | None = None,
    ) -> None:
        if not self._connected or self._producer is None:
            await self.connect()

        outgoing = dict(headers or {})
        if message_id is not None:
            outgoing.setdefault("message_id", message_id)

        with self._tracer.span_with_kind(
            f"choreography.broker.publish {destination}",
            SpanKindEnum.PRODUCER,
            {
                ATTR_MESSAGING_SYSTEM: self.system,
                ATTR_MESSAGING_DESTINATION: destination,
                ATTR_MESSAGING_OPERATION: "publish",
            },
        ):
            inject_trace_context(outgoing)
            try:
                await self._producer.send_and_wait(
                    destination,
                    value=body,
                    key=key.encode("utf-8") if key is not None else None,
                    headers=[(name, value.encode("utf-8")) for name, value in outgoing.items()],
                )
            except KafkaError as e:
                self._stats.publish_errors += 1
                logger.error(
                    "Failed to publish to Kafka",
                    extra={"topic": destination, "key": key, "error": str(e)},
                    exc_info=True,
                )
                raise BrokerError(f"Failed to publish to {destination}: {e}") from e

        self._stats.messages_published += 1
        self._stats.last_publish_at = datetime.now(UTC)
        logger.debug("Published message", extra={"topic": destination, "key": key})

    def dead_letter_destination(self, destination: str) -> str:
        return self._config.dlq_topic_name(destination)

    # =========================================================================
    # Consuming
    # =========================================================================

    def subscribe(
        self,
        destination: str,
        handler: MessageHandler,
        *,
        group: str | None = None,
    ) -> None:
        group = group or self._config.consumer_group
        if destination in self._handlers[group]:
            raise ValueError(f"Group {group!r} is already subscribed to {destination!r}")
        if self._consuming:
            raise RuntimeError("Cannot subscribe while consuming. Stop the broker first.")
        self._handlers[group][destination] = handler
        logger.info("Subscribed to %s", destination, extra={"topic": destination, "group": group})

    async def start(self) -> None:
        if self._consuming:
            logger.warning("Already consuming")
            return
        if not self._connected:
            await self.connect()

        for group, handlers in self._handlers.items():
            consumer = AIOKafkaConsumer(*handlers, **self._config.get_consumer_config(group))
            await consumer.start()
            self._consumers[group] = consumer
            self._tasks.spawn(
                self._consume(group, consumer),
                name=f"kafka-consumer-{group}-{self._config.consumer_name}",
            )
            logger.info(
                "Started Kafka consumer",
                extra={"consumer_group": group, "topics": sorted(handlers)},
            )
        self._consuming = True

    async def stop(self, timeout: float | None = None) -> None:
        timeout = timeout or self._config.shutdown_timeout
        logger.info("Shutting down KafkaBroker", extra={"timeout": timeout})
        self._consuming = False
        await self._tasks.stop(timeout)
        await self.disconnect()
        logger.info("KafkaBroker shutdown complete")

    async def _consume(self, group: str, consumer: Any) -> None:
        handlers = self._handlers[group]
        async for record in consumer:
            if not self._consuming:
                break
            with self._tasks.busy():
                await self._process_record(group, consumer, handlers, record)

    async def _process_record(
        self,
        group: str,
        consumer: Any,
        handlers: dict[str, MessageHandler],
        record: Any,
    ) -> None:
        self._stats.messages_consumed += 1
        self._stats.last_consume_at = datetime.now(UTC)

        message = self._to_inbound(record)
        handler = handlers[record.topic]

        try:
            with self._tracer.span_with_kind(
                f"choreography.broker.consume {record.topic}",
                SpanKindEnum.CONSUMER,
                {
                    ATTR_MESSAGING_SYSTEM: self.system,
                    ATTR_MESSAGING_DESTINATION: record.topic,
                    ATTR_MESSAGING_OPERATION: "process",
                    ATTR_CONSUMER_GROUP: group,
                },
            ):
                await handler(message)
        except Exception as e:
            self._stats.handler_errors += 1
            logger.error(
                "Handler failed, message will be redelivered",
                extra={
                    "topic": record.topic,
                    "partition": record.partition,
                    "offset": record.offset,
                    "consumer_group": group,
                    "error": str(e),
                },
                exc_info=True,
            )
            consumer.seek(TopicPartition(record.topic, record.partition), record.offset)
            await asyncio.sleep(self._config.redelivery_delay)
            return

        await consumer.commit()
        self._stats.messages_committed += 1

    @staticmethod
    def _to_inbound(record: Any) -> InboundMessage:
        headers = {
            name: value.decode("utf-8", errors="replace") if isinstance(value, bytes) else str(value)
            for name, value in (record.headers or [])
        }
        key = record.key.decode("utf-8") if isinstance(record.key, bytes) else record.key
        return InboundMessage(
            destination=record.topic,
            body=record.value if record.value is not None else b"",
            key=key,
            headers=headers,
            message_id=headers.get("message_id"),
            partition=record.partition,
            offset=record.offset,
        )


__all__ = [
    "KAFKA_AVAILABLE",
    "KafkaBroker",
    "KafkaBrokerConfig",
    "KafkaBrokerStats",
]
