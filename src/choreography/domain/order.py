"""Order aggregate: CREATED -> PAYMENT_PENDING -> PAID -> SHIPPED."""

from __future__ import annotations

from datetime import datetime
from enum import StrEnum
from typing import ClassVar, Self

from pydantic import BaseModel, ConfigDict, Field, model_validator

from choreography.domain.base import Aggregate, utcnow
from choreography.domain.values import CustomerId, Money, OrderId, ProductId


class OrderStatus(StrEnum):
    CREATED = "CREATED"
    PAYMENT_PENDING = "PAYMENT_PENDING"
    PAID = "PAID"
    SHIPPED = "SHIPPED"


class OrderItem(BaseModel):
    """A product line on an order, priced at the time the order was placed."""

    model_config = ConfigDict(frozen=True)

    product_id: ProductId
    quantity: int = Field(ge=1)
    unit_price: Money

    @property
    def line_total(self) -> Money:
        return self.unit_price.multiply(self.quantity)


class Order(Aggregate):
    """
    Order owned by the order service.

    The total is always derived from the items, never stored, so it cannot
    drift from the line items. Every transition refreshes ``updated_at``.

    Example:
        >>> order = Order.create("ord-1", "cust-1", [item])
        >>> order = order.mark_payment_pending().mark_paid()
        >>> order.status
        <OrderStatus.PAID: 'PAID'>
    """

    aggregate_type: ClassVar[str] = "Order"

    order_id: OrderId
    customer_id: CustomerId
    items: tuple[OrderItem, ...]
    status: OrderStatus = OrderStatus.CREATED
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @model_validator(mode="after")
    def _check_items(self) -> Self:
        if not self.items:
            raise ValueError("an order requires at least one item")
        currencies = {item.unit_price.currency for item in self.items}
        if len(currencies) > 1:
            raise ValueError(f"all items must share one currency, got {sorted(currencies)}")
        return self

    @property
    def aggregate_id(self) -> str:
        return self.order_id

    @property
    def total_amount(self) -> Money:
        total = Money.zero(self.items[0].unit_price.currency)
        for item in self.items:
            total = total.add(item.line_total)
        return total

    @classmethod
    def create(
        cls,
        order_id: str,
        customer_id: str,
        items: list[OrderItem] | tuple[OrderItem, ...],
    ) -> Order:
        now = utcnow()
        return cls._build(
            order_id=order_id,
            customer_id=customer_id,
            items=tuple(items),
            status=OrderStatus.CREATED,
            created_at=now,
            updated_at=now,
        )

    def mark_payment_pending(self) -> Order:
        self._require_status("mark payment pending", OrderStatus.CREATED)
        return self._evolve(status=OrderStatus.PAYMENT_PENDING, updated_at=utcnow())

    def mark_paid(self) -> Order:
        self._require_status("mark paid", OrderStatus.PAYMENT_PENDING)
        return self._evolve(status=OrderStatus.PAID, updated_at=utcnow())

    def mark_shipped(self) -> Order:
        self._require_status("mark shipped", OrderStatus.PAID)
        return self._evolve(status=OrderStatus.SHIPPED, updated_at=utcnow())


__all__ = ["Order", "OrderItem", "OrderStatus"]
