"""Payment aggregate: PENDING -> COMPLETED | FAILED."""

from __future__ import annotations

from datetime import datetime
from enum import StrEnum
from typing import ClassVar, Self

from pydantic import Field, model_validator

from choreography.domain.base import Aggregate, utcnow
from choreography.domain.values import Money, OrderId, PaymentId


class PaymentStatus(StrEnum):
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class Payment(Aggregate):
    """
    Payment owned by the payment service.

    Invariants:
        - amount is strictly positive
        - completed_at is None exactly while the payment is PENDING
    """

    aggregate_type: ClassVar[str] = "Payment"

    payment_id: PaymentId
    order_id: OrderId
    amount: Money
    status: PaymentStatus = PaymentStatus.PENDING
    created_at: datetime = Field(default_factory=utcnow)
    completed_at: datetime | None = None

    @model_validator(mode="after")
    def _check_invariants(self) -> Self:
        if not self.amount.is_positive():
            raise ValueError(f"payment amount must be positive, got {self.amount}")
        if self.status is PaymentStatus.PENDING and self.completed_at is not None:
            raise ValueError("a pending payment cannot have completed_at")
        if self.status is not PaymentStatus.PENDING and self.completed_at is None:
            raise ValueError(f"a {self.status.value} payment requires completed_at")
        return self

    @property
    def aggregate_id(self) -> str:
        return self.payment_id

    @classmethod
    def create(cls, payment_id: str, order_id: str, amount: Money) -> Payment:
        return cls._build(
            payment_id=payment_id,
            order_id=order_id,
            amount=amount,
            status=PaymentStatus.PENDING,
            created_at=utcnow(),
            completed_at=None,
        )

    def complete(self) -> Payment:
        self._require_status("complete payment", PaymentStatus.PENDING)
        return self._evolve(status=PaymentStatus.COMPLETED, completed_at=utcnow())

    def fail(self) -> Payment:
        self._require_status("fail payment", PaymentStatus.PENDING)
        return self._evolve(status=PaymentStatus.FAILED, completed_at=utcnow())


__all__ = ["Payment", "PaymentStatus"]
