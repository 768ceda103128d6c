"""
Aggregate state machines and value objects.

Each aggregate is an immutable pydantic model exposing a ``create`` factory and
one method per legal status transition.
"""

from choreography.domain.base import Aggregate
from choreography.domain.notification import Notification, NotificationStatus, NotificationType
from choreography.domain.order import Order, OrderItem, OrderStatus
from choreography.domain.payment import Payment, PaymentStatus
from choreography.domain.shipment import Shipment, ShipmentStatus, generate_tracking_number
from choreography.domain.values import (
    CustomerId,
    Identifier,
    Money,
    NotificationId,
    OrderId,
    PaymentId,
    ProductId,
    ShipmentId,
    require_identifier,
)

__all__ = [
    "Aggregate",
    "CustomerId",
    "Identifier",
    "Money",
    "Notification",
    "NotificationId",
    "NotificationStatus",
    "NotificationType",
    "Order",
    "OrderId",
    "OrderItem",
    "OrderStatus",
    "Payment",
    "PaymentId",
    "PaymentStatus",
    "ProductId",
    "Shipment",
    "ShipmentId",
    "ShipmentStatus",
    "generate_tracking_number",
    "require_identifier",
]
