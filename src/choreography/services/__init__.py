"""Application services, one per bounded context."""

from choreography.services.catalog import InMemoryProductCatalog, ProductCatalog, ProductInfo
from choreography.services.notification import NotificationService
from choreography.services.order import CreateOrderCommand, OrderService
from choreography.services.payment import PaymentService
from choreography.services.shipping import ShippingService

__all__ = [
    "CreateOrderCommand",
    "InMemoryProductCatalog",
    "NotificationService",
    "OrderService",
    "PaymentService",
    "ProductCatalog",
    "ProductInfo",
    "ShippingService",
]
