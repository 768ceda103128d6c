"""Unit tests for ShippingService."""

import json

import pytest

from choreography.domain.shipment import Shipment, ShipmentStatus
from choreography.consumers.idempotency import InMemoryProcessedEventStore
from choreography.consumers.retry import RetryPolicy
from choreography.events import SHIPPING_QUEUE, EventPublisher, ServiceName, ShippingRequest, Topic
from choreography.exceptions import AggregateNotFoundError, IllegalStateTransitionError
from choreography.repositories import InMemoryRepository
from choreography.routing import shipping_router
from choreography.services.shipping import ShippingService
from tests.fixtures import FlakyBroker, RecordingBroker, SleepRecorder, sequential_ids


@pytest.fixture
def service(
    shipment_repo: InMemoryRepository[Shipment], recording_broker: RecordingBroker
) -> ShippingService:
    return ShippingService(
        shipment_repo,
        EventPublisher(recording_broker, ServiceName.SHIPPING),
        id_factory=sequential_ids("ship"),
        tracking_numbers=lambda: "TRK-1700000000000-42",
    )


class TestArrangeShipment:
    @pytest.mark.asyncio
    async def test_ships_and_publishes(
        self,
        service: ShippingService,
        shipment_repo: InMemoryRepository[Shipment],
        recording_broker: RecordingBroker,
    ) -> None:
        """The shipment goes PENDING -> IN_TRANSIT and shipment.arranged is published."""
        shipment = await service.arrange_shipment(
            ShippingRequest(order_id="ord-1"), correlation_id="corr-1"
        )

        assert shipment.shipment_id == "ship-1"
        assert shipment.status is ShipmentStatus.IN_TRANSIT
        assert shipment.tracking_number == "TRK-1700000000000-42"
        assert [s.status for s in shipment_repo.history("ship-1")] == [
            ShipmentStatus.PENDING,
            ShipmentStatus.IN_TRANSIT,
        ]

        [message] = recording_broker.published
        assert message.destination == Topic.SHIPMENT_ARRANGED
        assert message.key == "ord-1"
        document = json.loads(message.body)
        assert document["correlationId"] == "corr-1"
        assert document["payload"] == {
            "shipmentId": "ship-1",
            "orderId": "ord-1",
            "trackingNumber": "TRK-1700000000000-42",
            "status": "IN_TRANSIT",
        }

    @pytest.mark.asyncio
    async def test_find_by_order_id(self, service: ShippingService) -> None:
        shipment = await service.arrange_shipment(ShippingRequest(order_id="ord-7"))
        assert await service.find_by_order_id("ord-7") == shipment
        assert await service.find_by_order_id("ord-8") is None

    @pytest.mark.asyncio
    async def test_repeated_request_reuses_shipment(
        self,
        service: ShippingService,
        shipment_repo: InMemoryRepository[Shipment],
        recording_broker: RecordingBroker,
    ) -> None:
        """A second request for the same order announces the existing shipment again."""
        first = await service.arrange_shipment(ShippingRequest(order_id="ord-1"))
        second = await service.arrange_shipment(ShippingRequest(order_id="ord-1"))

        assert second == first
        assert len(shipment_repo) == 1
        assert len(recording_broker.published) == 2
        assert [s.status for s in shipment_repo.history("ship-1")] == [
            ShipmentStatus.PENDING,
            ShipmentStatus.IN_TRANSIT,
        ]

    @pytest.mark.asyncio
    async def test_delivered_shipment_is_not_announced_again(
        self, service: ShippingService, recording_broker: RecordingBroker
    ) -> None:
        shipment = await service.arrange_shipment(ShippingRequest(order_id="ord-1"))
        await service.deliver(shipment.shipment_id)

        result = await service.arrange_shipment(ShippingRequest(order_id="ord-1"))

        assert result.status is ShipmentStatus.DELIVERED
        assert len(recording_broker.published) == 1


class TestDeliver:
    @pytest.mark.asyncio
    async def test_deliver_in_transit_shipment(self, service: ShippingService) -> None:
        shipment = await service.arrange_shipment(ShippingRequest(order_id="ord-1"))
        delivered = await service.deliver(shipment.shipment_id)
        assert delivered.status is ShipmentStatus.DELIVERED
        assert (await service.find_by_id("ship-1")) == delivered

    @pytest.mark.asyncio
    async def test_deliver_twice_is_illegal(self, service: ShippingService) -> None:
        shipment = await service.arrange_shipment(ShippingRequest(order_id="ord-1"))
        await service.deliver(shipment.shipment_id)
        with pytest.raises(IllegalStateTransitionError):
            await service.deliver(shipment.shipment_id)

    @pytest.mark.asyncio
    async def test_deliver_unknown_shipment(self, service: ShippingService) -> None:
        with pytest.raises(AggregateNotFoundError):
            await service.deliver("ship-404")


class TestShippingRetry:
    @pytest.mark.asyncio
    async def test_failed_publish_is_retried_on_the_same_shipment(
        self,
        shipment_repo: InMemoryRepository[Shipment],
        recording_broker: RecordingBroker,
        store: InMemoryProcessedEventStore,
        sleep: SleepRecorder,
    ) -> None:
        """
        shipment.arranged fails to publish once. The retried handler finds the
        shipment it already dispatched and only publishes again.
        """
        log_broker = FlakyBroker(failures=1)
        service = ShippingService(
            shipment_repo,
            EventPublisher(log_broker, ServiceName.SHIPPING),
            id_factory=sequential_ids("ship"),
            tracking_numbers=lambda: "TRK-1700000000000-42",
        )
        shipping_router(
            service, recording_broker, store, RetryPolicy(max_attempts=3), sleep=sleep
        ).register()

        await recording_broker.deliver(
            SHIPPING_QUEUE,
            b'{"orderId":"ord-1","action":"ARRANGE_SHIPMENT"}',
            group="shipping-service",
            message_id="ntf-1",
        )

        [shipment] = await shipment_repo.find_all()
        assert shipment.shipment_id == "ship-1"
        assert shipment.status is ShipmentStatus.IN_TRANSIT
        assert log_broker.attempts == 2
        [message] = log_broker.published
        assert json.loads(message.body)["payload"]["shipmentId"] == "ship-1"
        assert sleep.delays == [1.0]
        assert recording_broker.dead_letters == []
