"""
Shipping service: arranges shipments requested over the queue.

arrange_shipment is idempotent per order id. A retried or repeated request
reuses the order's shipment instead of creating another one.
"""

import asyncio
import logging
import weakref
from collections.abc import Callable

from choreography.domain.shipment import Shipment, ShipmentStatus, generate_tracking_number
from choreography.events.envelope import new_id
from choreography.events.payloads import ShipmentArrangedPayload, ShippingRequest
from choreography.events.publisher import EventPublisher
from choreography.events.types import EventType
from choreography.repositories import Repository

logger = logging.getLogger(__name__)


class ShippingService:
    def __init__(
        self,
        repository: Repository[Shipment],
        publisher: EventPublisher,
        *,
        id_factory: Callable[[], str] = new_id,
        tracking_numbers: Callable[[], str] = generate_tracking_number,
    ) -> None:
        self._repository = repository
        self._publisher = publisher
        self._id_factory = id_factory
        self._tracking_numbers = tracking_numbers
        self._order_locks: weakref.WeakValueDictionary[str, asyncio.Lock] = (
            weakref.WeakValueDictionary()
        )

    async def arrange_shipment(
        self,
        request: ShippingRequest,
        correlation_id: str | None = None,
    ) -> Shipment:
        """
        Create and dispatch the order's shipment, then publish shipment.arranged.

        A PENDING shipment left by an earlier attempt is dispatched, and an
        IN_TRANSIT one is only announced again. A DELIVERED shipment is
        returned as is.

        Args:
            request: Shipping request from the queue
            correlation_id: Correlation id of the originating flow

        Returns:
            The order's shipment
        """
        order_id = request.order_id
        lock = self._order_locks.get(order_id)
        if lock is None:
            lock = asyncio.Lock()
            self._order_locks[order_id] = lock

        async with lock:
            shipment = await self.find_by_order_id(order_id)
            if shipment is None:
                shipment = await self._repository.save(
                    Shipment.create(self._id_factory(), order_id)
                )
            elif shipment.status is ShipmentStatus.DELIVERED:
                logger.info(
                    "Shipment %s for order %s is already delivered",
                    shipment.shipment_id,
                    order_id,
                    extra={"order_id": order_id, "shipment_id": shipment.shipment_id},
                )
                return shipment
            else:
                logger.info(
                    "Reusing %s shipment %s for order %s",
                    shipment.status.value,
                    shipment.shipment_id,
                    order_id,
                    extra={"order_id": order_id, "shipment_id": shipment.shipment_id},
                )

            if shipment.status is ShipmentStatus.PENDING:
                shipment = await self._repository.save(shipment.ship(self._tracking_numbers()))

            await self._publisher.publish(
                EventType.SHIPMENT_ARRANGED,
                ShipmentArrangedPayload(
                    shipment_id=shipment.shipment_id,
                    order_id=shipment.order_id,
                    tracking_number=shipment.tracking_number,
                    status=shipment.status.value,
                ),
                key=shipment.order_id,
                correlation_id=correlation_id,
            )

        logger.info(
            "Arranged shipment %s for order %s",
            shipment.shipment_id,
            shipment.order_id,
            extra={
                "order_id": shipment.order_id,
                "shipment_id": shipment.shipment_id,
                "tracking_number": shipment.tracking_number,
            },
        )
        return shipment

    async def deliver(self, shipment_id: str) -> Shipment:
        """
        Mark an in-transit shipment delivered.

        Raises:
            AggregateNotFoundError: If the shipment is unknown
            IllegalStateTransitionError: If the shipment is not IN_TRANSIT
        """
        shipment = await self._repository.get(shipment_id)
        return await self._repository.save(shipment.deliver())

    async def find_by_id(self, shipment_id: str) -> Shipment | None:
        return await self._repository.find_by_id(shipment_id)

    async def find_by_order_id(self, order_id: str) -> Shipment | None:
        return await self._repository.find_first(lambda s: s.order_id == order_id)


__all__ = ["ShippingService"]
