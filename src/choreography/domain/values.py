"""
Value objects shared by the aggregates: money and identifiers.

Identifiers are plain strings constrained by an Annotated validator, so an
aggregate of one context only ever holds a validated copy of another
context's identifier, never a reference to its aggregate.
"""

from __future__ import annotations

from decimal import Decimal, InvalidOperation
from typing import Annotated, Any

import pydantic
from pydantic import AfterValidator, BaseModel, ConfigDict, Field, field_serializer, field_validator

from choreography.exceptions import CurrencyMismatchError, DomainValidationError


def _not_blank(value: str) -> str:
    stripped = value.strip()
    if not stripped:
        raise ValueError("must not be blank")
    return stripped


Identifier = Annotated[str, AfterValidator(_not_blank)]

OrderId = Identifier
PaymentId = Identifier
ShipmentId = Identifier
NotificationId = Identifier
CustomerId = Identifier
ProductId = Identifier


def require_identifier(value: str | None, name: str) -> str:
    """
    Validate an identifier outside of a model.

    Args:
        value: Candidate identifier
        name: Field name used in the error message

    Returns:
        The identifier with surrounding whitespace removed

    Raises:
        DomainValidationError: If the value is None or blank
    """
    if value is None or not str(value).strip():
        raise DomainValidationError(f"{name} must not be blank")
    return str(value).strip()


class Money(BaseModel):
    """
    A non-negative decimal amount in a three-letter currency.

    Amounts are serialized to JSON as numbers to match the wire format of the
    events and the payment API.

    Example:
        >>> price = Money.of("7.50", "usd")
        >>> price.multiply(3)
        Money(amount=Decimal('22.50'), currency='USD')
    """

    model_config = ConfigDict(frozen=True)

    amount: Decimal = Field(ge=0)
    currency: str

    @field_validator("currency")
    @classmethod
    def _normalise_currency(cls, value: str) -> str:
        code = value.strip().upper()
        if len(code) != 3 or not code.isalpha():
            raise ValueError(f"currency must be a 3-letter ISO code, got {value!r}")
        return code

    @field_serializer("amount", when_used="json")
    def _serialize_amount(self, amount: Decimal) -> float:
        return float(amount)

    @classmethod
    def of(cls, amount: Any, currency: str) -> Money:
        """Build Money from an int, str, float or Decimal amount."""
        try:
            value = amount if isinstance(amount, Decimal) else Decimal(str(amount))
        except (InvalidOperation, ValueError) as e:
            raise DomainValidationError(f"Invalid money amount: {amount!r}") from e
        try:
            return cls(amount=value, currency=currency)
        except pydantic.ValidationError as e:
            first = e.errors()[0]
            raise DomainValidationError(
                f"Invalid money: {str(first.get('msg', 'invalid')).removeprefix('Value error, ')}"
            ) from e

    @classmethod
    def zero(cls, currency: str) -> Money:
        return cls.of(0, currency)

    def add(self, other: Money) -> Money:
        if other.currency != self.currency:
            raise CurrencyMismatchError(self.currency, other.currency)
        return Money(amount=self.amount + other.amount, currency=self.currency)

    def multiply(self, quantity: int) -> Money:
        if isinstance(quantity, bool) or quantity < 1:
            raise DomainValidationError(f"quantity must be positive, got {quantity}")
        return Money(amount=self.amount * quantity, currency=self.currency)

    def is_positive(self) -> bool:
        return self.amount > 0

    def __str__(self) -> str:
        return f"{self.amount} {self.currency}"


__all__ = [
    "CustomerId",
    "Identifier",
    "Money",
    "NotificationId",
    "OrderId",
    "PaymentId",
    "ProductId",
    "ShipmentId",
    "require_identifier",
]
