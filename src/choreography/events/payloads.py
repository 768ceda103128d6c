"""
Payload models carried inside event envelopes and queue messages.

Field names are snake_case in Python and camelCase on the wire.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from choreography.domain.values import (
    CustomerId,
    Identifier,
    Money,
    OrderId,
    PaymentId,
    ProductId,
    ShipmentId,
)

SHIPPING_ACTION_ARRANGE = "ARRANGE_SHIPMENT"


class Payload(BaseModel):
    """Base class for wire payloads (camelCase aliases, frozen)."""

    model_config = ConfigDict(
        frozen=True,
        alias_generator=to_camel,
        populate_by_name=True,
    )

    def to_wire(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)


class OrderCreatedPayload(Payload):
    order_id: OrderId
    customer_id: CustomerId
    product_id: ProductId
    quantity: int = Field(ge=1)
    total_amount: Money


class PaymentCompletedPayload(Payload):
    payment_id: PaymentId
    order_id: OrderId
    amount: Money
    status: str


class ShipmentArrangedPayload(Payload):
    shipment_id: ShipmentId
    order_id: OrderId
    tracking_number: Identifier
    status: str


class ShippingRequest(Payload):
    """Queue message body asking the shipping service to ship an order."""

    order_id: OrderId
    action: Identifier = SHIPPING_ACTION_ARRANGE


__all__ = [
    "OrderCreatedPayload",
    "Payload",
    "PaymentCompletedPayload",
    "SHIPPING_ACTION_ARRANGE",
    "ShipmentArrangedPayload",
    "ShippingRequest",
]
