"""Names shared across services: event types, producing services and destinations."""

from enum import StrEnum


class EventType(StrEnum):
    ORDER_CREATED = "ORDER_CREATED"
    PAYMENT_COMPLETED = "PAYMENT_COMPLETED"
    SHIPMENT_ARRANGED = "SHIPMENT_ARRANGED"


class ServiceName(StrEnum):
    """Producing service names. Also used as consumer group ids."""

    ORDER = "order-service"
    PAYMENT = "payment-service"
    NOTIFICATION = "notification-service"
    SHIPPING = "shipping-service"


class Topic(StrEnum):
    """Log broker topics. Every message is keyed by order id."""

    ORDER_CREATED = "order.created"
    PAYMENT_COMPLETED = "payment.completed"
    SHIPMENT_ARRANGED = "shipment.arranged"


SHIPPING_EXCHANGE = "shipping.exchange"
SHIPPING_ROUTING_KEY = "shipping.notification"
SHIPPING_QUEUE = "shipping.queue"

# Queue messages carry no envelope; this tag identifies them in logs and the guard.
SHIPPING_REQUEST_TYPE = "SHIPPING_REQUEST"

EVENT_TOPICS: dict[EventType, Topic] = {
    EventType.ORDER_CREATED: Topic.ORDER_CREATED,
    EventType.PAYMENT_COMPLETED: Topic.PAYMENT_COMPLETED,
    EventType.SHIPMENT_ARRANGED: Topic.SHIPMENT_ARRANGED,
}

__all__ = [
    "EVENT_TOPICS",
    "EventType",
    "SHIPPING_EXCHANGE",
    "SHIPPING_QUEUE",
    "SHIPPING_REQUEST_TYPE",
    "SHIPPING_ROUTING_KEY",
    "ServiceName",
    "Topic",
]
