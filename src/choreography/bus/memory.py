"""In-memory broker implementations.

This module provides in-process stand-ins for the two broker styles:

- InMemoryLogBroker behaves like a partitioned log: messages are routed to a
  partition by key, every consumer group sees every message, and messages of a
  partition are handled strictly one after another.
- InMemoryQueueBroker behaves like a topic exchange with durable queues:
  publishing targets a routing key, consumers on a queue compete, and a
  rejected message is moved to the queue's dead-letter queue.

Suitable for development, tests and single-process deployments.
"""

from __future__ import annotations

import asyncio
import logging
import threading
import zlib
from collections import defaultdict
from dataclasses import dataclass, field, replace

from choreography.bus.interface import (
    InboundMessage,
    MessageBroker,
    MessageHandler,
    QueueTopology,
)
from choreography.bus.workers import ConsumerTasks
from choreography.observability import (
    ATTR_CONSUMER_GROUP,
    ATTR_MESSAGING_DESTINATION,
    ATTR_MESSAGING_MESSAGE_ID,
    ATTR_MESSAGING_SYSTEM,
    SpanKindEnum,
    Tracer,
    create_tracer,
)

logger = logging.getLogger(__name__)

DEFAULT_GROUP = "default"


def partition_for(key: str | None, partitions: int) -> int:
    """Stable partition for a key. Messages without a key go to partition 0."""
    if not key:
        return 0
    return zlib.crc32(key.encode("utf-8")) % partitions


@dataclass
class _GroupSubscription:
    topic: str
    group: str
    handler: MessageHandler
    queues: list[asyncio.Queue[InboundMessage]] = field(default_factory=list)
    started: bool = False


class _IdleTracker:
    """Counts messages enqueued but not yet fully handled."""

    def __init__(self) -> None:
        self._pending = 0
        self._idle = asyncio.Event()
        self._idle.set()

    def add(self) -> None:
        self._pending += 1
        self._idle.clear()

    def done(self) -> None:
        self._pending -= 1
        if self._pending <= 0:
            self._pending = 0
            self._idle.set()

    @property
    def pending(self) -> int:
        return self._pending

    async def wait(self, timeout: float) -> None:
        await asyncio.wait_for(self._idle.wait(), timeout=timeout)


class InMemoryLogBroker(MessageBroker):
    """
    Partitioned in-memory log.

    Each (topic, group) subscription gets one worker per partition. A worker
    hands its partition's messages to the handler one at a time, so two
    messages with the same key are never handled concurrently and are handled
    in publish order. Subscribing replays the topic from the beginning,
    matching an ``earliest`` offset reset.

    A handler that raises gets the same message again, up to
    ``max_redeliveries`` times, before the message is skipped. Skipped
    messages are kept and listed by ``skipped_messages``.

    Example:
        >>> broker = InMemoryLogBroker(partitions=3)
        >>> broker.subscribe("order.created", handle, group="payment-service")
        >>> await broker.start()
        >>> await broker.publish("order.created", body, key="ord-1")
        >>> await broker.wait_until_idle()
    """

    system = "memory-log"

    def __init__(
        self,
        *,
        partitions: int = 3,
        max_redeliveries: int = 3,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        if partitions < 1:
            raise ValueError("partitions must be at least 1")
        if max_redeliveries < 0:
            raise ValueError("max_redeliveries must be non-negative")

        self._partitions = partitions
        self._max_redeliveries = max_redeliveries
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._lock = threading.RLock()

        self._log: dict[str, list[InboundMessage]] = defaultdict(list)
        self._next_offset: dict[tuple[str, int], int] = defaultdict(int)
        self._subscriptions: dict[tuple[str, str], _GroupSubscription] = {}
        self._consumers = ConsumerTasks("memory-log")
        self._skipped: list[tuple[str, InboundMessage]] = []
        self._idle = _IdleTracker()
        self._running = False

        self._stats = {
            "messages_published": 0,
            "messages_delivered": 0,
            "messages_acknowledged": 0,
            "handler_errors": 0,
            "redeliveries": 0,
            "messages_skipped": 0,
        }

    @property
    def partitions(self) -> int:
        return self._partitions

    @property
    def is_running(self) -> bool:
        return self._running

    async def publish(
        self,
        destination: str,
        body: bytes,
        *,
        key: str | None = None,
        headers: dict[str, str] | None = None,
        message_id: str | None = None,
    ) -> None:
        partition = partition_for(key, self._partitions)
        with self._tracer.span_with_kind(
            "choreography.broker.publish",
            SpanKindEnum.PRODUCER,
            {
                ATTR_MESSAGING_SYSTEM: self.system,
                ATTR_MESSAGING_DESTINATION: destination,
                ATTR_MESSAGING_MESSAGE_ID: message_id,
            },
        ):
            with self._lock:
                offset = self._next_offset[(destination, partition)]
                self._next_offset[(destination, partition)] = offset + 1
                message = InboundMessage(
                    destination=destination,
                    body=bytes(body),
                    key=key,
                    headers=dict(headers or {}),
                    message_id=message_id,
                    partition=partition,
                    offset=offset,
                )
                self._log[destination].append(message)
                subscriptions = [
                    sub for (topic, _), sub in self._subscriptions.items() if topic == destination
                ]
            for sub in subscriptions:
                self._enqueue(sub, message)

            self._stats["messages_published"] += 1
            logger.debug(
                "Published message to %s partition %d offset %d",
                destination,
                partition,
                offset,
                extra={"topic": destination, "key": key, "message_id": message_id},
            )

    def subscribe(
        self,
        destination: str,
        handler: MessageHandler,
        *,
        group: str | None = None,
    ) -> None:
        group = group or DEFAULT_GROUP
        with self._lock:
            if (destination, group) in self._subscriptions:
                raise ValueError(f"Group {group!r} is already subscribed to {destination!r}")
            sub = _GroupSubscription(
                topic=destination,
                group=group,
                handler=handler,
                queues=[asyncio.Queue() for _ in range(self._partitions)],
            )
            self._subscriptions[(destination, group)] = sub
            backlog = list(self._log.get(destination, ()))

        for message in backlog:
            self._enqueue(sub, message)

        logger.info(
            "Subscribed group %s to %s",
            group,
            destination,
            extra={"topic": destination, "group": group, "backlog": len(backlog)},
        )
        if self._running:
            self._start_subscription(sub)

    def dead_letter_destination(self, destination: str) -> str:
        return f"{destination}.dlq"

    async def start(self) -> None:
        if self._running:
            return
        self._running = True
        with self._lock:
            subscriptions = list(self._subscriptions.values())
        for sub in subscriptions:
            self._start_subscription(sub)
        logger.info(
            "In-memory log broker started",
            extra={"subscriptions": len(subscriptions), "partitions": self._partitions},
        )

    async def stop(self, timeout: float | None = None) -> None:
        if not self._running:
            return
        self._running = False
        await self._consumers.stop(timeout if timeout is not None else 30.0)
        with self._lock:
            for sub in self._subscriptions.values():
                sub.started = False
        logger.info("In-memory log broker stopped")

    async def wait_until_idle(self, timeout: float = 5.0) -> None:
        """
        Wait until every enqueued message has been handled.

        Messages published by handlers while waiting are waited for too.

        Raises:
            TimeoutError: If the broker is still busy after ``timeout`` seconds
        """
        await self._idle.wait(timeout)

    def messages(self, topic: str) -> list[InboundMessage]:
        """All messages ever published to a topic, in publish order."""
        with self._lock:
            return list(self._log.get(topic, ()))

    def skipped_messages(self, group: str | None = None) -> list[InboundMessage]:
        """Messages given up on after ``max_redeliveries``, optionally for one group."""
        with self._lock:
            return [m for g, m in self._skipped if group is None or g == group]

    @property
    def pending_messages(self) -> int:
        """Messages enqueued for a consumer but not yet handled."""
        return self._idle.pending

    def get_stats(self) -> dict[str, int]:
        return dict(self._stats)

    def _enqueue(self, sub: _GroupSubscription, message: InboundMessage) -> None:
        assert message.partition is not None
        self._idle.add()
        sub.queues[message.partition].put_nowait(message)

    def _start_subscription(self, sub: _GroupSubscription) -> None:
        if sub.started:
            return
        sub.started = True
        for partition, queue in enumerate(sub.queues):
            self._consumers.spawn(
                self._consume_partition(sub, queue),
                name=f"memory-log:{sub.topic}:{sub.group}:{partition}",
            )

    async def _consume_partition(
        self,
        sub: _GroupSubscription,
        queue: asyncio.Queue[InboundMessage],
    ) -> None:
        while self._running:
            message = await queue.get()
            try:
                with self._consumers.busy():
                    await self._deliver(sub, message)
            finally:
                queue.task_done()
                self._idle.done()

    async def _deliver(self, sub: _GroupSubscription, message: InboundMessage) -> None:
        for attempt in range(1, self._max_redeliveries + 2):
            delivery = message if attempt == 1 else replace(message, delivery_count=attempt)
            self._stats["messages_delivered"] += 1
            try:
                with self._tracer.span_with_kind(
                    "choreography.broker.deliver",
                    SpanKindEnum.CONSUMER,
                    {
                        ATTR_MESSAGING_SYSTEM: self.system,
                        ATTR_MESSAGING_DESTINATION: sub.topic,
                        ATTR_CONSUMER_GROUP: sub.group,
                    },
                ):
                    await sub.handler(delivery)
            except Exception as e:
                self._stats["handler_errors"] += 1
                logger.error(
                    "Handler failed for %s (group %s), delivery %d: %s",
                    sub.topic,
                    sub.group,
                    attempt,
                    e,
                    exc_info=True,
                    extra={
                        "topic": sub.topic,
                        "group": sub.group,
                        "partition": message.partition,
                        "offset": message.offset,
                    },
                )
                if attempt <= self._max_redeliveries:
                    self._stats["redeliveries"] += 1
                    continue
                self._stats["messages_skipped"] += 1
                with self._lock:
                    self._skipped.append((sub.group, message))
                logger.error(
                    "Skipping message after %d deliveries",
                    attempt,
                    extra={
                        "topic": sub.topic,
                        "group": sub.group,
                        "partition": message.partition,
                        "offset": message.offset,
                    },
                )
                return
            self._stats["messages_acknowledged"] += 1
            return


class InMemoryQueueBroker(MessageBroker):
    """
    In-memory topic exchange with durable queues and dead-lettering.

    Every declared QueueTopology binds its routing key to its queue and its
    dead-letter routing key to its dead-letter queue. A message whose handler
    raises is rejected without requeue and moved to the dead-letter queue.

    Example:
        >>> broker = InMemoryQueueBroker()
        >>> broker.subscribe("shipping.queue", handle)
        >>> await broker.start()
        >>> await broker.publish("shipping.notification", body, message_id="msg-1")
    """

    system = "memory-queue"

    def __init__(
        self,
        topologies: list[QueueTopology] | None = None,
        *,
        consumers_per_queue: int = 1,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        if consumers_per_queue < 1:
            raise ValueError("consumers_per_queue must be at least 1")

        self._consumers_per_queue = consumers_per_queue
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._lock = threading.RLock()

        self._bindings: dict[str, list[str]] = defaultdict(list)
        self._dead_letter_queues: dict[str, str] = {}
        self._queues: dict[str, asyncio.Queue[InboundMessage]] = {}
        self._history: dict[str, list[InboundMessage]] = defaultdict(list)
        self._handlers: dict[str, MessageHandler] = {}
        self._started_queues: set[str] = set()
        self._consumers = ConsumerTasks("memory-queue")
        self._idle = _IdleTracker()
        self._running = False

        self._stats = {
            "messages_published": 0,
            "messages_unroutable": 0,
            "messages_acknowledged": 0,
            "messages_rejected": 0,
            "messages_dead_lettered": 0,
        }

        for topology in topologies if topologies is not None else [QueueTopology()]:
            self.declare(topology)

    def declare(self, topology: QueueTopology) -> None:
        """Declare a queue, its dead-letter queue and their bindings."""
        with self._lock:
            for queue in (topology.queue, topology.dlq_queue):
                self._queues.setdefault(queue, asyncio.Queue())
            if topology.queue not in self._bindings[topology.routing_key]:
                self._bindings[topology.routing_key].append(topology.queue)
            if topology.dlq_queue not in self._bindings[topology.dlq_routing_key]:
                self._bindings[topology.dlq_routing_key].append(topology.dlq_queue)
            self._dead_letter_queues[topology.queue] = topology.dlq_queue

    @property
    def is_running(self) -> bool:
        return self._running

    async def publish(
        self,
        destination: str,
        body: bytes,
        *,
        key: str | None = None,
        headers: dict[str, str] | None = None,
        message_id: str | None = None,
    ) -> None:
        with self._tracer.span_with_kind(
            "choreography.broker.publish",
            SpanKindEnum.PRODUCER,
            {
                ATTR_MESSAGING_SYSTEM: self.system,
                ATTR_MESSAGING_DESTINATION: destination,
                ATTR_MESSAGING_MESSAGE_ID: message_id,
            },
        ):
            with self._lock:
                queues = list(self._bindings.get(destination, ()))
            self._stats["messages_published"] += 1
            if not queues:
                self._stats["messages_unroutable"] += 1
                logger.warning(
                    "No queue bound to routing key %s, message dropped",
                    destination,
                    extra={"routing_key": destination, "message_id": message_id},
                )
                return
            for queue in queues:
                self._enqueue(
                    queue,
                    InboundMessage(
                        destination=queue,
                        body=bytes(body),
                        key=destination,
                        headers=dict(headers or {}),
                        message_id=message_id,
                    ),
                )

    def subscribe(
        self,
        destination: str,
        handler: MessageHandler,
        *,
        group: str | None = None,
    ) -> None:
        with self._lock:
            if destination not in self._queues:
                raise ValueError(f"Queue {destination!r} is not declared")
            if destination in self._handlers:
                raise ValueError(f"Queue {destination!r} already has a consumer")
            self._handlers[destination] = handler
            # Messages that arrived before the consumer registered
            backlog = self._queues[destination].qsize()
        for _ in range(backlog):
            self._idle.add()
        logger.info("Subscribed to queue %s", destination, extra={"queue": destination})
        if self._running:
            self._start_queue(destination)

    def dead_letter_destination(self, destination: str) -> str:
        try:
            return self._dead_letter_queues[destination]
        except KeyError:
            raise ValueError(f"Queue {destination!r} has no dead-letter queue") from None

    async def publish_dead_letter(
        self,
        message: InboundMessage,
        body: bytes,
        headers: dict[str, str],
    ) -> None:
        dlq = self.dead_letter_destination(message.destination)
        self._stats["messages_dead_lettered"] += 1
        self._enqueue(
            dlq,
            InboundMessage(
                destination=dlq,
                body=bytes(body),
                key=message.key,
                headers=dict(headers),
                message_id=message.message_id,
            ),
        )

    async def start(self) -> None:
        if self._running:
            return
        self._running = True
        with self._lock:
            queues = list(self._handlers)
        for queue in queues:
            self._start_queue(queue)
        logger.info("In-memory queue broker started", extra={"queues": len(queues)})

    async def stop(self, timeout: float | None = None) -> None:
        if not self._running:
            return
        self._running = False
        await self._consumers.stop(timeout if timeout is not None else 30.0)
        self._started_queues.clear()
        logger.info("In-memory queue broker stopped")

    async def wait_until_idle(self, timeout: float = 5.0) -> None:
        """
        Wait until every message on a consumed queue has been handled.

        Messages sitting on queues without a consumer (dead-letter queues,
        usually) do not keep the broker busy.
        """
        await self._idle.wait(timeout)

    def messages(self, queue: str) -> list[InboundMessage]:
        """All messages ever enqueued on a queue, in arrival order."""
        with self._lock:
            return list(self._history.get(queue, ()))

    @property
    def pending_messages(self) -> int:
        """Messages enqueued for a consumer but not yet handled."""
        return self._idle.pending

    def get_stats(self) -> dict[str, int]:
        return dict(self._stats)

    def _enqueue(self, queue: str, message: InboundMessage) -> None:
        with self._lock:
            self._history[queue].append(message)
            consumed = queue in self._handlers
        if consumed:
            self._idle.add()
        self._queues[queue].put_nowait(message)

    def _start_queue(self, queue: str) -> None:
        if queue in self._started_queues:
            return
        self._started_queues.add(queue)
        for n in range(self._consumers_per_queue):
            self._consumers.spawn(self._consume_queue(queue), name=f"memory-queue:{queue}:{n}")

    async def _consume_queue(self, queue_name: str) -> None:
        queue = self._queues[queue_name]
        handler = self._handlers[queue_name]
        while self._running:
            message = await queue.get()
            try:
                with self._consumers.busy():
                    await self._deliver(queue_name, handler, message)
            finally:
                queue.task_done()
                self._idle.done()

    async def _deliver(self, queue: str, handler: MessageHandler, message: InboundMessage) -> None:
        try:
            with self._tracer.span_with_kind(
                "choreography.broker.deliver",
                SpanKindEnum.CONSUMER,
                {
                    ATTR_MESSAGING_SYSTEM: self.system,
                    ATTR_MESSAGING_DESTINATION: queue,
                    ATTR_MESSAGING_MESSAGE_ID: message.message_id,
                },
            ):
                await handler(message)
        except Exception as e:
            self._stats["messages_rejected"] += 1
            logger.error(
                "Handler failed for queue %s, rejecting message: %s",
                queue,
                e,
                exc_info=True,
                extra={"queue": queue, "message_id": message.message_id},
            )
            dlq = self._dead_letter_queues.get(queue)
            if dlq is not None:
                self._stats["messages_dead_lettered"] += 1
                self._enqueue(dlq, replace(message, destination=dlq))
            return
        self._stats["messages_acknowledged"] += 1


__all__ = [
    "DEFAULT_GROUP",
    "InMemoryLogBroker",
    "InMemoryQueueBroker",
    "partition_for",
]
