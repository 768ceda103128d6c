"""
Request and response schemas of the HTTP API.

These are external contracts, kept separate from the aggregates. Field names
are camelCase on the wire.
"""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from choreography.domain.order import Order
from choreography.domain.payment import Payment
from choreography.domain.values import Identifier, Money


class _Schema(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class MoneySchema(_Schema):
    amount: float
    currency: str

    @classmethod
    def from_money(cls, money: Money) -> MoneySchema:
        return cls(amount=float(money.amount), currency=money.currency)

    def to_money(self) -> Money:
        return Money.of(self.amount, self.currency)


# ---------------------------------------------------------------------------
# Orders
# ---------------------------------------------------------------------------
class OrderRequest(_Schema):
    product_id: Identifier
    quantity: int = Field(ge=1)
    customer_id: Identifier

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        json_schema_extra={
            "examples": [{"productId": "prod-1", "quantity": 2, "customerId": "cust-1"}]
        },
    )


class OrderResponse(_Schema):
    id: str
    customer_id: str
    product_id: str
    quantity: int
    total_amount: MoneySchema
    status: str
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_order(cls, order: Order) -> OrderResponse:
        # Orders placed over the API carry a single item
        item = order.items[0]
        return cls(
            id=order.order_id,
            customer_id=order.customer_id,
            product_id=item.product_id,
            quantity=item.quantity,
            total_amount=MoneySchema.from_money(order.total_amount),
            status=order.status.value,
            created_at=order.created_at,
            updated_at=order.updated_at,
        )


# ---------------------------------------------------------------------------
# Payments
# ---------------------------------------------------------------------------
class PaymentRequest(_Schema):
    order_id: Identifier
    amount: MoneySchema


class PaymentResponse(_Schema):
    id: str
    order_id: str
    amount: MoneySchema
    status: str
    created_at: datetime
    completed_at: datetime | None = None

    @classmethod
    def from_payment(cls, payment: Payment) -> PaymentResponse:
        return cls(
            id=payment.payment_id,
            order_id=payment.order_id,
            amount=MoneySchema.from_money(payment.amount),
            status=payment.status.value,
            created_at=payment.created_at,
            completed_at=payment.completed_at,
        )


class ErrorResponse(_Schema):
    error: str
    message: str
    timestamp: datetime


__all__ = [
    "ErrorResponse",
    "MoneySchema",
    "OrderRequest",
    "OrderResponse",
    "PaymentRequest",
    "PaymentResponse",
]
