"""Library exceptions for the choreography package.

Every exception raised by the choreography layer derives from
ChoreographyError and carries an ErrorKind. Consumers use the kind to
decide between retrying, dead-lettering and dropping a message.
"""

from enum import Enum

import httpx
import pydantic


class ErrorKind(Enum):
    """
    Classification of a failure for message handling.

    Attributes:
        MALFORMED: Input could not be parsed. Dropped, never retried.
        TRANSIENT: Infrastructure or timing problem. Retried, then dead-lettered.
        ILLEGAL_STATE: Transition requested from the wrong status. Never retried.
        VALIDATION: Value rejected at construction. Never retried.
    """

    MALFORMED = "malformed"
    TRANSIENT = "transient"
    ILLEGAL_STATE = "illegal_state"
    VALIDATION = "validation"

    @property
    def retryable(self) -> bool:
        return self is ErrorKind.TRANSIENT


class ChoreographyError(Exception):
    """Base exception for the choreography library."""

    kind: ErrorKind = ErrorKind.TRANSIENT

    @property
    def retryable(self) -> bool:
        return self.kind.retryable


class MalformedEnvelopeError(ChoreographyError):
    """Raised when an inbound message cannot be decoded into an envelope."""

    kind = ErrorKind.MALFORMED

    def __init__(self, message: str, raw: bytes | None = None) -> None:
        self.raw = raw
        super().__init__(f"Malformed envelope: {message}")


class DomainValidationError(ChoreographyError, ValueError):
    """Raised when a value object or aggregate rejects its input."""

    kind = ErrorKind.VALIDATION


class CurrencyMismatchError(DomainValidationError):
    """Raised when money values of different currencies are combined."""

    def __init__(self, left: str, right: str) -> None:
        self.left = left
        self.right = right
        super().__init__(f"Cannot combine money in different currencies: {left} and {right}")


class InsufficientStockError(DomainValidationError):
    """Raised when an order asks for more units than the catalog has in stock."""

    def __init__(self, product_id: str, requested: int, available: int) -> None:
        self.product_id = product_id
        self.requested = requested
        self.available = available
        super().__init__(
            f"Insufficient stock for product {product_id}: "
            f"requested {requested}, available {available}"
        )


class IllegalStateTransitionError(ChoreographyError):
    """
    Raised when an aggregate transition is invoked from the wrong status.

    The aggregate the method was called on is left untouched.

    Attributes:
        aggregate_type: Name of the aggregate class (e.g. 'Order')
        aggregate_id: Identifier of the aggregate instance
        action: The transition that was attempted (e.g. 'mark paid')
        current_status: Status the aggregate was in
        expected_status: Status the transition requires
    """

    kind = ErrorKind.ILLEGAL_STATE

    def __init__(
        self,
        aggregate_type: str,
        aggregate_id: str,
        action: str,
        current_status: str,
        expected_status: str,
    ) -> None:
        self.aggregate_type = aggregate_type
        self.aggregate_id = aggregate_id
        self.action = action
        self.current_status = current_status
        self.expected_status = expected_status
        super().__init__(
            f"Cannot {action}: {aggregate_type.lower()} {aggregate_id} is in "
            f"{current_status} status, expected {expected_status}"
        )


class AggregateNotFoundError(ChoreographyError):
    """Raised when an aggregate referenced by an event cannot be found."""

    kind = ErrorKind.TRANSIENT

    def __init__(self, aggregate_type: str, aggregate_id: str) -> None:
        self.aggregate_type = aggregate_type
        self.aggregate_id = aggregate_id
        super().__init__(f"{aggregate_type} not found: {aggregate_id}")


class TransientError(ChoreographyError):
    """Raised for failures that may succeed when attempted again."""

    kind = ErrorKind.TRANSIENT


class PaymentServiceError(TransientError):
    """Raised when the payment service answers with a non-2xx status."""

    def __init__(self, status_code: int, detail: str = "") -> None:
        self.status_code = status_code
        self.detail = detail
        suffix = f": {detail}" if detail else ""
        super().__init__(f"Payment service returned HTTP {status_code}{suffix}")


class OrderAwaitingPaymentError(TransientError):
    """
    Raised when an order is shipped while its payment is still being reconciled.

    shipment.arranged and payment.completed travel on different topics, so a
    fallback order can hear about its shipment before it is marked PAID.
    """

    def __init__(self, order_id: str) -> None:
        self.order_id = order_id
        super().__init__(f"Order {order_id} is still awaiting payment")


class BrokerError(TransientError):
    """Raised when a broker operation fails."""

    pass


class BrokerNotAvailableError(ImportError):
    """Raised when the client library for a broker is not installed."""

    def __init__(self, package: str, extra: str) -> None:
        self.package = package
        self.extra = extra
        super().__init__(
            f"{package} package is not installed. "
            f"Install it with: pip install order-choreography[{extra}]"
        )


TRANSIENT_EXCEPTIONS: tuple[type[BaseException], ...] = (
    TransientError,
    ConnectionError,
    TimeoutError,
    OSError,
    httpx.TransportError,
)


def classify_error(error: BaseException) -> ErrorKind:
    """
    Map an exception to the ErrorKind that governs how it is handled.

    Library exceptions carry their own kind. pydantic validation failures are
    validation errors. Anything unrecognised is treated as transient so that
    it is retried and eventually dead-lettered instead of being dropped.
    """
    if isinstance(error, ChoreographyError):
        return error.kind
    if isinstance(error, pydantic.ValidationError):
        return ErrorKind.VALIDATION
    return ErrorKind.TRANSIENT


__all__ = [
    "AggregateNotFoundError",
    "BrokerError",
    "BrokerNotAvailableError",
    "ChoreographyError",
    "CurrencyMismatchError",
    "DomainValidationError",
    "ErrorKind",
    "IllegalStateTransitionError",
    "InsufficientStockError",
    "MalformedEnvelopeError",
    "OrderAwaitingPaymentError",
    "PaymentServiceError",
    "TRANSIENT_EXCEPTIONS",
    "TransientError",
    "classify_error",
]
