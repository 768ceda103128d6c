"""Tests for the tracer abstraction and header propagation."""

import pytest

from choreography.observability import (
    OTEL_AVAILABLE,
    MockTracer,
    NullTracer,
    SpanKindEnum,
    Tracer,
    create_tracer,
    inject_trace_context,
)


class TestNullTracer:
    def test_spans_yield_none(self) -> None:
        tracer = NullTracer()

        with tracer.span("op", {"k": "v"}) as span:
            assert span is None
        with tracer.span_with_kind("op", SpanKindEnum.PRODUCER) as span:
            assert span is None

        assert tracer.enabled is False

    def test_satisfies_protocol(self) -> None:
        assert isinstance(NullTracer(), Tracer)
        assert isinstance(MockTracer(), Tracer)


class TestMockTracer:
    def test_records_spans_and_kinds(self) -> None:
        tracer = MockTracer()

        with tracer.span("choreography.repository.save", {"a": 1}):
            pass
        with tracer.span_with_kind("memory.publish", SpanKindEnum.PRODUCER):
            pass

        assert tracer.span_names == ["choreography.repository.save", "memory.publish"]
        assert tracer.spans[0] == ("choreography.repository.save", {"a": 1})
        assert tracer.kinds == {"memory.publish": SpanKindEnum.PRODUCER}

    def test_clear(self) -> None:
        tracer = MockTracer()
        with tracer.span_with_kind("op", SpanKindEnum.CONSUMER):
            pass

        tracer.clear()

        assert tracer.spans == []
        assert tracer.kinds == {}


class TestCreateTracer:
    def test_disabled_returns_null_tracer(self) -> None:
        assert isinstance(create_tracer(__name__, enable_tracing=False), NullTracer)

    @pytest.mark.skipif(OTEL_AVAILABLE, reason="OpenTelemetry is installed")
    def test_without_opentelemetry_returns_null_tracer(self) -> None:
        assert isinstance(create_tracer(__name__), NullTracer)


class TestInjectTraceContext:
    def test_returns_same_headers(self) -> None:
        headers = {"correlation_id": "corr-1"}

        result = inject_trace_context(headers)

        assert result is headers
        assert result["correlation_id"] == "corr-1"
