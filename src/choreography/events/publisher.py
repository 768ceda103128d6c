"""Publishing envelopes to a log broker."""

from __future__ import annotations

import logging

from choreography.bus.interface import MessageBroker
from choreography.events.envelope import EventEnvelope
from choreography.events.payloads import Payload
from choreography.events.types import EVENT_TOPICS, EventType

logger = logging.getLogger(__name__)

HEADER_EVENT_TYPE = "event_type"
HEADER_EVENT_ID = "event_id"
HEADER_CORRELATION_ID = "correlation_id"
HEADER_SOURCE = "source"


def envelope_headers(envelope: EventEnvelope) -> dict[str, str]:
    """Routing headers sent alongside every envelope."""
    return {
        HEADER_EVENT_TYPE: envelope.event_type,
        HEADER_EVENT_ID: envelope.event_id,
        HEADER_CORRELATION_ID: envelope.correlation_id,
        HEADER_SOURCE: envelope.source,
    }


class EventPublisher:
    """
    Wraps payloads in envelopes and publishes them for one producing service.

    Example:
        >>> publisher = EventPublisher(broker, ServiceName.PAYMENT)
        >>> await publisher.publish(
        ...     EventType.PAYMENT_COMPLETED, payload, key=order_id, correlation_id=cid
        ... )
    """

    def __init__(self, broker: MessageBroker, source: str) -> None:
        self._broker = broker
        self._source = str(source)

    @property
    def broker(self) -> MessageBroker:
        return self._broker

    @property
    def source(self) -> str:
        return self._source

    async def publish(
        self,
        event_type: EventType,
        payload: Payload,
        *,
        key: str,
        correlation_id: str | None = None,
        topic: str | None = None,
    ) -> EventEnvelope:
        """
        Publish a new envelope.

        Args:
            event_type: Type of the event
            payload: Payload model
            key: Partition key (the order id)
            correlation_id: Correlation id to propagate (generated if None)
            topic: Destination override (defaults to the event type's topic)

        Returns:
            The envelope that was published
        """
        destination = topic or EVENT_TOPICS[event_type]
        envelope = EventEnvelope.create(
            event_type,
            self._source,
            payload,
            correlation_id=correlation_id,
        )
        await self._broker.publish(
            destination,
            envelope.to_bytes(),
            key=key,
            headers=envelope_headers(envelope),
            message_id=envelope.event_id,
        )
        logger.debug(
            "Published %s to %s",
            event_type,
            destination,
            extra={
                "event_id": envelope.event_id,
                "event_type": str(event_type),
                "destination": destination,
                "key": key,
                "correlation_id": envelope.correlation_id,
            },
        )
        return envelope


__all__ = [
    "EventPublisher",
    "HEADER_CORRELATION_ID",
    "HEADER_EVENT_ID",
    "HEADER_EVENT_TYPE",
    "HEADER_SOURCE",
    "envelope_headers",
]
