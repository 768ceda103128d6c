"""
Standard span attributes for choreography components.

Messaging attributes follow OpenTelemetry semantic conventions; the rest are
namespaced under ``choreography.``.
"""

# =============================================================================
# Event Attributes
# =============================================================================

ATTR_EVENT_ID = "choreography.event.id"
"""Envelope event id (UUID string), also the idempotency key."""

ATTR_EVENT_TYPE = "choreography.event.type"
"""Envelope event type tag (e.g. 'ORDER_CREATED')."""

# =============================================================================
# Domain Attributes
# =============================================================================

ATTR_ORDER_ID = "choreography.order.id"
"""Order id, also the partition key on the log broker."""

ATTR_AGGREGATE_TYPE = "choreography.aggregate.type"
"""Aggregate type name (e.g. 'Payment')."""

# =============================================================================
# Consumer Attributes
# =============================================================================

ATTR_CONSUMER_GROUP = "choreography.consumer.group"
"""Consumer group (service name) handling a message."""

ATTR_DUPLICATE = "choreography.consumer.duplicate"
"""True when the idempotency guard skipped an already processed event."""

# =============================================================================
# Resilience Attributes
# =============================================================================

ATTR_CIRCUIT_NAME = "choreography.circuit.name"
"""Circuit breaker name."""

ATTR_CIRCUIT_STATE = "choreography.circuit.state"
"""Circuit breaker state when a call was made (closed/open/half_open)."""

# =============================================================================
# Messaging Attributes (OTEL semantic conventions)
# =============================================================================

ATTR_MESSAGING_SYSTEM = "messaging.system"
"""Messaging system identifier (e.g. 'kafka', 'rabbitmq', 'memory')."""

ATTR_MESSAGING_DESTINATION = "messaging.destination.name"
"""Topic, routing key or queue name."""

ATTR_MESSAGING_OPERATION = "messaging.operation"
"""Messaging operation (e.g. 'publish', 'receive', 'process')."""

ATTR_MESSAGING_MESSAGE_ID = "messaging.message.id"
"""Broker-level message id when one exists."""

# =============================================================================
# HTTP Attributes (OTEL semantic conventions)
# =============================================================================

ATTR_HTTP_METHOD = "http.request.method"
"""HTTP method of an outgoing request."""

ATTR_HTTP_STATUS_CODE = "http.response.status_code"
"""HTTP status code of a response."""

ATTR_HTTP_URL = "url.full"
"""Full URL of an outgoing request."""

__all__ = [
    "ATTR_AGGREGATE_TYPE",
    "ATTR_CIRCUIT_NAME",
    "ATTR_CIRCUIT_STATE",
    "ATTR_CONSUMER_GROUP",
    "ATTR_DUPLICATE",
    "ATTR_EVENT_ID",
    "ATTR_EVENT_TYPE",
    "ATTR_HTTP_METHOD",
    "ATTR_HTTP_STATUS_CODE",
    "ATTR_HTTP_URL",
    "ATTR_MESSAGING_DESTINATION",
    "ATTR_MESSAGING_MESSAGE_ID",
    "ATTR_MESSAGING_OPERATION",
    "ATTR_MESSAGING_SYSTEM",
    "ATTR_ORDER_ID",
]
