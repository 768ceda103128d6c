"""
Observability utilities for choreography.

Provides the composition-based Tracer abstraction, trace-context propagation
helpers for message headers, and standard span attribute names.

Note:
    OpenTelemetry is an optional dependency. All utilities in this module
    gracefully handle the case where OpenTelemetry is not installed.
"""

from choreography.observability.attributes import (
    ATTR_AGGREGATE_TYPE,
    ATTR_CIRCUIT_NAME,
    ATTR_CIRCUIT_STATE,
    ATTR_CONSUMER_GROUP,
    ATTR_DUPLICATE,
    ATTR_EVENT_ID,
    ATTR_EVENT_TYPE,
    ATTR_HTTP_METHOD,
    ATTR_HTTP_STATUS_CODE,
    ATTR_HTTP_URL,
    ATTR_MESSAGING_DESTINATION,
    ATTR_MESSAGING_MESSAGE_ID,
    ATTR_MESSAGING_OPERATION,
    ATTR_MESSAGING_SYSTEM,
    ATTR_ORDER_ID,
)
from choreography.observability.tracer import (
    MockTracer,
    NullTracer,
    OpenTelemetryTracer,
    SpanKindEnum,
    Tracer,
    create_tracer,
)
from choreography.observability.tracing import (
    OTEL_AVAILABLE,
    inject_trace_context,
)

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
    "MockTracer",
    "NullTracer",
    "OTEL_AVAILABLE",
    "OpenTelemetryTracer",
    "SpanKindEnum",
    "Tracer",
    "create_tracer",
    "inject_trace_context",
]
