"""Unit tests for ChoreographyRouter and the message decoders."""

import pytest

from choreography.bus.interface import InboundMessage
from choreography.consumers.idempotency import InMemoryProcessedEventStore
from choreography.consumers.retry import RetryPolicy
from choreography.events import EventType, ShippingRequest
from choreography.events.payloads import ShipmentArrangedPayload
from choreography.exceptions import IllegalStateTransitionError, MalformedEnvelopeError
from choreography.routing import (
    ChoreographyRouter,
    DecodedMessage,
    Route,
    envelope_decoder,
    shipping_request_decoder,
)
from tests.fixtures import (
    RecordingBroker,
    SleepRecorder,
    make_envelope,
    shipment_arranged_payload,
)

TOPIC = "shipment.arranged"


class _Handler:
    """Route handler counting calls and optionally failing."""

    def __init__(self, error: BaseException | None = None) -> None:
        self.error = error
        self.received: list[DecodedMessage] = []

    async def __call__(self, decoded: DecodedMessage) -> str:
        self.received.append(decoded)
        if self.error is not None:
            raise self.error
        return "ord-1"


def _router(
    broker: RecordingBroker,
    store: InMemoryProcessedEventStore,
    handler: _Handler,
    sleep: SleepRecorder,
) -> ChoreographyRouter:
    router = ChoreographyRouter(
        "order-service", store, RetryPolicy(max_attempts=3), sleep=sleep, enable_tracing=False
    )
    router.add_route(Route(broker, TOPIC, envelope_decoder(ShipmentArrangedPayload), handler))
    router.register()
    return router


def _body(event_id: str = "evt-1") -> bytes:
    return make_envelope(
        EventType.SHIPMENT_ARRANGED, shipment_arranged_payload(), event_id=event_id
    ).to_bytes()


class TestRegistration:
    def test_register_subscribes_with_service_group(
        self,
        recording_broker: RecordingBroker,
        store: InMemoryProcessedEventStore,
        sleep: SleepRecorder,
    ) -> None:
        router = _router(recording_broker, store, _Handler(), sleep)
        assert router.is_registered
        assert router.service_name == "order-service"
        assert list(recording_broker.subscriptions) == [(TOPIC, "order-service")]

    def test_duplicate_route_rejected(
        self, recording_broker: RecordingBroker, store: InMemoryProcessedEventStore
    ) -> None:
        router = ChoreographyRouter("order-service", store, enable_tracing=False)
        route = Route(recording_broker, TOPIC, envelope_decoder(), _Handler())
        router.add_route(route)
        with pytest.raises(ValueError, match="already routes"):
            router.add_route(route)

    def test_routes_frozen_after_register(
        self,
        recording_broker: RecordingBroker,
        store: InMemoryProcessedEventStore,
        sleep: SleepRecorder,
    ) -> None:
        router = _router(recording_broker, store, _Handler(), sleep)
        with pytest.raises(RuntimeError, match="already registered"):
            router.register()
        with pytest.raises(RuntimeError, match="already registered"):
            router.add_route(Route(recording_broker, "other", envelope_decoder(), _Handler()))


class TestDispatch:
    @pytest.mark.asyncio
    async def test_handles_envelope_once(
        self,
        recording_broker: RecordingBroker,
        store: InMemoryProcessedEventStore,
        sleep: SleepRecorder,
    ) -> None:
        """A redelivered envelope is skipped by the idempotency guard."""
        handler = _Handler()
        _router(recording_broker, store, handler, sleep)

        await recording_broker.deliver(TOPIC, _body(), group="order-service")
        await recording_broker.deliver(TOPIC, _body(), group="order-service")

        [decoded] = handler.received
        assert decoded.dedup_key == "evt-1"
        assert decoded.event_type == "SHIPMENT_ARRANGED"
        assert decoded.correlation_id == "corr-1"
        assert isinstance(decoded.value.payload, ShipmentArrangedPayload)
        outcome = await store.get_outcome("order-service", "evt-1")
        assert outcome is not None
        assert outcome.result == "ord-1"

    @pytest.mark.asyncio
    async def test_malformed_message_dropped(
        self,
        recording_broker: RecordingBroker,
        store: InMemoryProcessedEventStore,
        sleep: SleepRecorder,
    ) -> None:
        handler = _Handler()
        _router(recording_broker, store, handler, sleep)

        await recording_broker.deliver(TOPIC, b"not json", group="order-service")

        assert handler.received == []
        assert recording_broker.dead_letters == []
        assert len(store) == 0

    @pytest.mark.asyncio
    async def test_illegal_state_dead_lettered_without_retry(
        self,
        recording_broker: RecordingBroker,
        store: InMemoryProcessedEventStore,
        sleep: SleepRecorder,
    ) -> None:
        error = IllegalStateTransitionError("Order", "ord-1", "mark shipped", "CREATED", "PAID")
        handler = _Handler(error)
        _router(recording_broker, store, handler, sleep)

        await recording_broker.deliver(TOPIC, _body(), group="order-service")

        assert len(handler.received) == 1
        assert sleep.delays == []
        [dead] = recording_broker.dead_letters
        assert dead.destination == "shipment.arranged.dlq"
        assert dead.headers["dlq_reason"] == "non_retryable"
        assert dead.headers["dlq_error_type"] == "IllegalStateTransitionError"
        assert len(store) == 0

    @pytest.mark.asyncio
    async def test_transient_failure_retried_then_dead_lettered(
        self,
        recording_broker: RecordingBroker,
        store: InMemoryProcessedEventStore,
        sleep: SleepRecorder,
    ) -> None:
        handler = _Handler(ConnectionError("database unavailable"))
        _router(recording_broker, store, handler, sleep)

        await recording_broker.deliver(TOPIC, _body(), group="order-service")

        assert len(handler.received) == 3
        assert sleep.delays == [1.0, 1.0]
        [dead] = recording_broker.dead_letters
        assert dead.headers["dlq_reason"] == "retries_exhausted"
        assert dead.headers["dlq_retry_count"] == "3"


class TestShippingRequestDecoder:
    def test_uses_message_id_and_correlation_header(self) -> None:
        decoded = shipping_request_decoder(
            InboundMessage(
                destination="shipping.queue",
                body=b'{"orderId":"ord-1","action":"ARRANGE_SHIPMENT"}',
                headers={"correlation_id": "corr-9"},
                message_id="ntf-1",
            )
        )
        assert decoded.dedup_key == "ntf-1"
        assert decoded.event_type == "SHIPPING_REQUEST"
        assert decoded.correlation_id == "corr-9"
        assert decoded.value == ShippingRequest(order_id="ord-1")

    def test_dedup_key_without_message_id(self) -> None:
        """Producers that omit the message id are deduplicated by order and action."""
        decoded = shipping_request_decoder(
            InboundMessage(destination="shipping.queue", body=b'{"orderId":"ord-1"}')
        )
        assert decoded.dedup_key == "ord-1:ARRANGE_SHIPMENT"
        assert decoded.correlation_id is None

    @pytest.mark.parametrize(
        "body",
        [b"{broken", b"[1, 2]", b'{"action":"ARRANGE_SHIPMENT"}', b'{"orderId":"  "}'],
    )
    def test_invalid_bodies(self, body: bytes) -> None:
        with pytest.raises(MalformedEnvelopeError):
            shipping_request_decoder(InboundMessage(destination="shipping.queue", body=body))


class TestEnvelopeDecoder:
    def test_wrong_payload_shape_is_malformed(self) -> None:
        body = make_envelope(
            EventType.SHIPMENT_ARRANGED, shipment_arranged_payload()
        ).to_bytes().replace(b"trackingNumber", b"tracking")
        decode = envelope_decoder(ShipmentArrangedPayload)
        with pytest.raises(MalformedEnvelopeError, match="payload does not match"):
            decode(InboundMessage(destination=TOPIC, body=body))
