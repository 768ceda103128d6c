"""Per-service routing of inbound messages to business handlers."""

from choreography.routing.router import (
    ChoreographyRouter,
    DecodedMessage,
    Decoder,
    Route,
    RouteHandler,
    envelope_decoder,
    shipping_request_decoder,
)
from choreography.routing.routes import (
    notification_router,
    order_router,
    payment_router,
    shipping_router,
)

__all__ = [
    "ChoreographyRouter",
    "DecodedMessage",
    "Decoder",
    "Route",
    "RouteHandler",
    "envelope_decoder",
    "notification_router",
    "order_router",
    "payment_router",
    "shipping_router",
    "shipping_request_decoder",
]
