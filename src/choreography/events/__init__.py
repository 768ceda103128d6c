"""Event envelope codec, payload models and destination names."""

from choreography.events.envelope import (
    PAYLOAD_TYPES,
    DecodedEvent,
    EventEnvelope,
    decode,
    decode_envelope,
    encode,
    new_id,
)
from choreography.events.payloads import (
    SHIPPING_ACTION_ARRANGE,
    OrderCreatedPayload,
    Payload,
    PaymentCompletedPayload,
    ShipmentArrangedPayload,
    ShippingRequest,
)
from choreography.events.publisher import (
    HEADER_CORRELATION_ID,
    HEADER_EVENT_ID,
    HEADER_EVENT_TYPE,
    HEADER_SOURCE,
    EventPublisher,
    envelope_headers,
)
from choreography.events.types import (
    EVENT_TOPICS,
    SHIPPING_EXCHANGE,
    SHIPPING_QUEUE,
    SHIPPING_REQUEST_TYPE,
    SHIPPING_ROUTING_KEY,
    EventType,
    ServiceName,
    Topic,
)

__all__ = [
    "DecodedEvent",
    "EVENT_TOPICS",
    "EventEnvelope",
    "EventPublisher",
    "EventType",
    "HEADER_CORRELATION_ID",
    "HEADER_EVENT_ID",
    "HEADER_EVENT_TYPE",
    "HEADER_SOURCE",
    "OrderCreatedPayload",
    "PAYLOAD_TYPES",
    "Payload",
    "PaymentCompletedPayload",
    "SHIPPING_ACTION_ARRANGE",
    "SHIPPING_EXCHANGE",
    "SHIPPING_QUEUE",
    "SHIPPING_REQUEST_TYPE",
    "SHIPPING_ROUTING_KEY",
    "ServiceName",
    "ShipmentArrangedPayload",
    "ShippingRequest",
    "Topic",
    "decode",
    "decode_envelope",
    "encode",
    "envelope_headers",
    "new_id",
]
