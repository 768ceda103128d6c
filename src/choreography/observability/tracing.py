"""
OpenTelemetry availability detection and trace-context propagation.

OpenTelemetry is optional. Everything here degrades to a no-op when it is
not installed, so brokers can call these helpers unconditionally.
"""

from __future__ import annotations

# Optional OpenTelemetry import - single source of truth
try:
    from opentelemetry.propagate import inject

    OTEL_AVAILABLE = True
except ImportError:
    OTEL_AVAILABLE = False
    inject = None  # type: ignore[assignment]


def inject_trace_context(headers: dict[str, str]) -> dict[str, str]:
    """
    Add the current trace context (traceparent, tracestate) to message headers.

    Args:
        headers: Outgoing headers, updated in place

    Returns:
        The same headers dict, for chaining
    """
    if OTEL_AVAILABLE and inject is not None:
        inject(headers)
    return headers


__all__ = [
    "OTEL_AVAILABLE",
    "inject_trace_context",
]
