"""Notification service: turns completed payments into shipping requests."""

import logging
from collections.abc import Callable

from choreography.bus.interface import MessageBroker
from choreography.domain.notification import Notification, NotificationStatus
from choreography.events.envelope import EventEnvelope, new_id
from choreography.events.payloads import PaymentCompletedPayload, ShippingRequest
from choreography.events.publisher import HEADER_CORRELATION_ID, HEADER_SOURCE
from choreography.events.types import SHIPPING_ROUTING_KEY, ServiceName
from choreography.repositories import Repository

logger = logging.getLogger(__name__)


class NotificationService:
    """
    Application service for the notification context.

    Each payment.completed event gets exactly one notification, found again
    by the event id when the event is retried, and one shipping request on
    the queue broker. The notification id doubles as the queue message id,
    which the shipping consumer deduplicates on.
    """

    def __init__(
        self,
        repository: Repository[Notification],
        queue_broker: MessageBroker,
        *,
        routing_key: str = SHIPPING_ROUTING_KEY,
        id_factory: Callable[[], str] = new_id,
    ) -> None:
        self._repository = repository
        self._queue_broker = queue_broker
        self._routing_key = routing_key
        self._id_factory = id_factory

    async def handle_payment_completed(self, envelope: EventEnvelope) -> Notification:
        """
        Notify about a completed payment and request shipping.

        If the shipping request cannot be published, the notification is
        saved as FAILED and the publish error is re-raised. A retry of the
        same event resends that notification instead of creating another.
        """
        payload: PaymentCompletedPayload = envelope.payload
        notification = await self.find_by_event_id(envelope.event_id)
        if notification is None:
            notification = await self._repository.save(
                Notification.payment_confirmed(
                    self._id_factory(),
                    payload.order_id,
                    payload.payment_id,
                    envelope.event_id,
                )
            )
        elif notification.status is NotificationStatus.SENT:
            logger.info(
                "Notification %s for event %s was already sent",
                notification.notification_id,
                envelope.event_id,
                extra={
                    "order_id": payload.order_id,
                    "notification_id": notification.notification_id,
                    "event_id": envelope.event_id,
                },
            )
            return notification

        request = ShippingRequest(order_id=payload.order_id)
        try:
            await self._queue_broker.publish(
                self._routing_key,
                request.model_dump_json(by_alias=True).encode("utf-8"),
                key=payload.order_id,
                headers={
                    HEADER_CORRELATION_ID: envelope.correlation_id,
                    HEADER_SOURCE: ServiceName.NOTIFICATION.value,
                },
                message_id=notification.notification_id,
            )
        except Exception:
            logger.error(
                "Failed to request shipping for order %s",
                payload.order_id,
                exc_info=True,
                extra={
                    "order_id": payload.order_id,
                    "notification_id": notification.notification_id,
                    "routing_key": self._routing_key,
                },
            )
            if notification.status is NotificationStatus.PENDING:
                await self._repository.save(notification.mark_failed())
            raise

        notification = await self._repository.save(notification.mark_sent())
        logger.info(
            "Sent notification %s for order %s",
            notification.notification_id,
            payload.order_id,
            extra={
                "order_id": payload.order_id,
                "notification_id": notification.notification_id,
                "payment_id": payload.payment_id,
            },
        )
        return notification

    async def find_by_id(self, notification_id: str) -> Notification | None:
        return await self._repository.find_by_id(notification_id)

    async def find_by_event_id(self, event_id: str) -> Notification | None:
        return await self._repository.find_first(lambda n: n.event_id == event_id)


__all__ = ["NotificationService"]
