"""
Envelope codec for asynchronous events.

Every event published on the log broker is wrapped in the same JSON envelope:

    {
      "eventId": "6f1c...",            # producer generated, idempotency key
      "eventType": "ORDER_CREATED",
      "timestamp": "2024-05-01T12:00:00Z",
      "source": "order-service",
      "correlationId": "0b9e...",      # propagated end-to-end
      "payload": { ... }               # shape depends on eventType
    }

Decoding failures raise MalformedEnvelopeError. They are never retried.
"""

from __future__ import annotations

import json
from datetime import datetime
from decimal import Decimal
from typing import Any, NamedTuple
from uuid import uuid4

import pydantic
from pydantic import BaseModel, ConfigDict, Field, field_serializer
from pydantic.alias_generators import to_camel

from choreography.domain.base import describe_validation_error, utcnow
from choreography.domain.values import Identifier
from choreography.events.payloads import (
    OrderCreatedPayload,
    Payload,
    PaymentCompletedPayload,
    ShipmentArrangedPayload,
)
from choreography.events.types import EventType
from choreography.exceptions import MalformedEnvelopeError

PAYLOAD_TYPES: dict[str, type[Payload]] = {
    EventType.ORDER_CREATED: OrderCreatedPayload,
    EventType.PAYMENT_COMPLETED: PaymentCompletedPayload,
    EventType.SHIPMENT_ARRANGED: ShipmentArrangedPayload,
}


def new_id() -> str:
    return str(uuid4())


class EventEnvelope(BaseModel):
    """
    The common outer structure of every asynchronous event.

    After ``decode_envelope`` the ``payload`` attribute holds the validated
    payload model registered for ``event_type``; before that it may be a
    plain dict.

    Attributes:
        event_id: Globally unique id generated by the producer
        event_type: String tag selecting the payload shape
        timestamp: When the producer created the event (UTC)
        source: Name of the producing service
        correlation_id: Id linking every event of one business flow
        payload: Type-specific content
    """

    model_config = ConfigDict(
        frozen=True,
        alias_generator=to_camel,
        populate_by_name=True,
    )

    event_id: Identifier = Field(default_factory=new_id)
    event_type: Identifier
    timestamp: datetime = Field(default_factory=utcnow)
    source: Identifier
    correlation_id: Identifier = Field(default_factory=new_id)
    payload: Any

    @field_serializer("payload")
    def _serialize_payload(self, payload: Any) -> Any:
        if isinstance(payload, Payload):
            return payload.to_wire()
        return payload

    @classmethod
    def create(
        cls,
        event_type: str,
        source: str,
        payload: Payload | dict[str, Any],
        *,
        correlation_id: str | None = None,
        event_id: str | None = None,
    ) -> EventEnvelope:
        fields: dict[str, Any] = {
            "event_type": str(event_type),
            "source": str(source),
            "payload": payload,
        }
        if correlation_id:
            fields["correlation_id"] = correlation_id
        if event_id:
            fields["event_id"] = event_id
        return cls(**fields)

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)

    def to_bytes(self) -> bytes:
        return json.dumps(self.to_dict(), separators=(",", ":")).encode("utf-8")

    def payload_bytes(self) -> bytes:
        return json.dumps(self.to_dict()["payload"], separators=(",", ":")).encode("utf-8")


class DecodedEvent(NamedTuple):
    """Result of ``decode``: routing metadata plus the raw payload bytes."""

    event_type: str
    source: str
    correlation_id: str
    payload: bytes
    event_id: str


def encode(
    event_type: str,
    source_service: str,
    payload: Payload | dict[str, Any],
    *,
    correlation_id: str | None = None,
    event_id: str | None = None,
) -> bytes:
    """
    Wrap a payload in a new envelope and serialize it to UTF-8 JSON.

    Args:
        event_type: Event type tag (e.g. EventType.ORDER_CREATED)
        source_service: Name of the producing service
        payload: Payload model or JSON-compatible dict
        correlation_id: Correlation id to propagate (generated if None)
        event_id: Explicit event id (generated if None)

    Returns:
        Envelope bytes ready to publish
    """
    envelope = EventEnvelope.create(
        event_type,
        source_service,
        payload,
        correlation_id=correlation_id,
        event_id=event_id,
    )
    return envelope.to_bytes()


def _load_object(data: bytes | str) -> dict[str, Any]:
    try:
        text = data.decode("utf-8") if isinstance(data, bytes | bytearray) else data
        obj = json.loads(text, parse_float=Decimal)
    except UnicodeDecodeError as e:
        raise MalformedEnvelopeError("body is not valid UTF-8", raw=bytes(data)) from e
    except json.JSONDecodeError as e:
        raise MalformedEnvelopeError(f"body is not valid JSON ({e.msg})", raw=_raw(data)) from e
    if not isinstance(obj, dict):
        raise MalformedEnvelopeError(
            f"expected a JSON object, got {type(obj).__name__}", raw=_raw(data)
        )
    return obj


def _raw(data: bytes | str) -> bytes:
    return bytes(data) if isinstance(data, bytes | bytearray) else data.encode("utf-8")


def decode_envelope(
    data: bytes | str,
    payload_type: type[Payload] | None = None,
) -> EventEnvelope:
    """
    Parse and validate an envelope together with its payload.

    Args:
        data: Raw message value
        payload_type: Expected payload model. Defaults to the model
            registered for the envelope's event type.

    Returns:
        EventEnvelope whose payload is an instance of the payload model

    Raises:
        MalformedEnvelopeError: If the envelope or payload is invalid, or the
            event type is unknown and no payload_type was given
    """
    obj = _load_object(data)
    try:
        envelope = EventEnvelope.model_validate(obj)
    except pydantic.ValidationError as e:
        raise MalformedEnvelopeError(describe_validation_error(e), raw=_raw(data)) from e

    expected = payload_type or PAYLOAD_TYPES.get(envelope.event_type)
    if expected is None:
        raise MalformedEnvelopeError(f"unknown event type {envelope.event_type!r}", raw=_raw(data))
    if not isinstance(envelope.payload, dict):
        raise MalformedEnvelopeError(
            f"payload for {envelope.event_type} must be an object", raw=_raw(data)
        )
    try:
        payload = expected.model_validate(envelope.payload)
    except pydantic.ValidationError as e:
        raise MalformedEnvelopeError(
            f"payload does not match {envelope.event_type}: {describe_validation_error(e)}",
            raw=_raw(data),
        ) from e

    return envelope.model_copy(update={"payload": payload})


def decode(data: bytes | str) -> DecodedEvent:
    """
    Decode an envelope into its routing metadata and raw payload bytes.

    The payload is validated against the model registered for its event type
    before it is handed back.

    Raises:
        MalformedEnvelopeError: If required fields are missing or the payload
            does not match the expected shape for the event type
    """
    envelope = decode_envelope(data)
    return DecodedEvent(
        event_type=envelope.event_type,
        source=envelope.source,
        correlation_id=envelope.correlation_id,
        payload=envelope.payload_bytes(),
        event_id=envelope.event_id,
    )


__all__ = [
    "DecodedEvent",
    "EventEnvelope",
    "PAYLOAD_TYPES",
    "decode",
    "decode_envelope",
    "encode",
    "new_id",
]
