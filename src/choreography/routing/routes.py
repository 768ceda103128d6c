"""Route tables of the four services."""

from collections.abc import Awaitable, Callable

from choreography.bus.interface import MessageBroker
from choreography.consumers.idempotency import ProcessedEventStore
from choreography.consumers.retry import RetryPolicy
from choreography.events.payloads import PaymentCompletedPayload, ShipmentArrangedPayload
from choreography.events.types import SHIPPING_QUEUE, ServiceName, Topic
from choreography.routing.router import (
    ChoreographyRouter,
    DecodedMessage,
    Route,
    envelope_decoder,
    shipping_request_decoder,
)
from choreography.services import NotificationService, OrderService, PaymentService, ShippingService


def _router(
    service: ServiceName,
    store: ProcessedEventStore,
    retry_policy: RetryPolicy | None,
    sleep: Callable[[float], Awaitable[None]] | None,
) -> ChoreographyRouter:
    if sleep is None:
        return ChoreographyRouter(service, store, retry_policy)
    return ChoreographyRouter(service, store, retry_policy, sleep=sleep)


def order_router(
    service: OrderService,
    log_broker: MessageBroker,
    store: ProcessedEventStore,
    retry_policy: RetryPolicy | None = None,
    *,
    sleep: Callable[[float], Awaitable[None]] | None = None,
) -> ChoreographyRouter:
    """Order consumes shipment.arranged, and payment.completed to reconcile fallbacks."""

    async def on_shipment_arranged(decoded: DecodedMessage) -> str:
        order = await service.handle_shipment_arranged(decoded.value.payload)
        return order.order_id

    async def on_payment_completed(decoded: DecodedMessage) -> str:
        order = await service.handle_payment_completed(decoded.value.payload)
        return order.order_id

    router = _router(ServiceName.ORDER, store, retry_policy, sleep)
    router.add_route(
        Route(
            log_broker,
            Topic.SHIPMENT_ARRANGED,
            envelope_decoder(ShipmentArrangedPayload),
            on_shipment_arranged,
            name="shipment-arranged",
        )
    )
    router.add_route(
        Route(
            log_broker,
            Topic.PAYMENT_COMPLETED,
            envelope_decoder(PaymentCompletedPayload),
            on_payment_completed,
            name="payment-reconciliation",
        )
    )
    return router


def payment_router(
    service: PaymentService,
    log_broker: MessageBroker,
    store: ProcessedEventStore,
    retry_policy: RetryPolicy | None = None,
    *,
    sleep: Callable[[float], Awaitable[None]] | None = None,
) -> ChoreographyRouter:
    async def on_order_created(decoded: DecodedMessage) -> str:
        payment = await service.handle_order_created(decoded.value)
        return payment.payment_id

    router = _router(ServiceName.PAYMENT, store, retry_policy, sleep)
    router.add_route(
        Route(
            log_broker,
            Topic.ORDER_CREATED,
            envelope_decoder(),
            on_order_created,
            name="order-created",
        )
    )
    return router


def notification_router(
    service: NotificationService,
    log_broker: MessageBroker,
    store: ProcessedEventStore,
    retry_policy: RetryPolicy | None = None,
    *,
    sleep: Callable[[float], Awaitable[None]] | None = None,
) -> ChoreographyRouter:
    async def on_payment_completed(decoded: DecodedMessage) -> str:
        notification = await service.handle_payment_completed(decoded.value)
        return notification.notification_id

    router = _router(ServiceName.NOTIFICATION, store, retry_policy, sleep)
    router.add_route(
        Route(
            log_broker,
            Topic.PAYMENT_COMPLETED,
            envelope_decoder(),
            on_payment_completed,
            name="payment-completed",
        )
    )
    return router


def shipping_router(
    service: ShippingService,
    queue_broker: MessageBroker,
    store: ProcessedEventStore,
    retry_policy: RetryPolicy | None = None,
    *,
    queue: str = SHIPPING_QUEUE,
    sleep: Callable[[float], Awaitable[None]] | None = None,
) -> ChoreographyRouter:
    async def on_shipping_request(decoded: DecodedMessage) -> str:
        shipment = await service.arrange_shipment(decoded.value, decoded.correlation_id)
        return shipment.shipment_id

    router = _router(ServiceName.SHIPPING, store, retry_policy, sleep)
    router.add_route(
        Route(
            queue_broker,
            queue,
            shipping_request_decoder,
            on_shipping_request,
            name="shipping-request",
        )
    )
    return router


__all__ = ["notification_router", "order_router", "payment_router", "shipping_router"]
