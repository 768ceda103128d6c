"""
Synchronous payment call used by the order service.

Three PaymentPort implementations share one result type:

- HttpPaymentClient calls the payment service's REST API with httpx.
- LocalPaymentClient calls an in-process PaymentService.
- ResilientPaymentClient wraps either one with bounded retry and a circuit
  breaker and degrades to a FAILED fallback result instead of raising.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING, Protocol, runtime_checkable

import httpx
import pydantic
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from choreography.domain.base import describe_validation_error
from choreography.domain.values import Money, require_identifier
from choreography.exceptions import TRANSIENT_EXCEPTIONS, DomainValidationError, PaymentServiceError
from choreography.observability import (
    ATTR_CIRCUIT_NAME,
    ATTR_CIRCUIT_STATE,
    ATTR_HTTP_METHOD,
    ATTR_HTTP_STATUS_CODE,
    ATTR_HTTP_URL,
    ATTR_ORDER_ID,
    SpanKindEnum,
    Tracer,
    create_tracer,
)
from choreography.resilience import (
    CircuitBreaker,
    CircuitBreakerOpenError,
    RetryConfig,
    RetryError,
    retry_async,
)

if TYPE_CHECKING:
    from choreography.domain.payment import Payment
    from choreography.services.payment import PaymentService

logger = logging.getLogger(__name__)

PAYMENTS_PATH = "/api/v1/payments"
FALLBACK_STATUS = "FAILED"
COMPLETED_STATUS = "COMPLETED"


@dataclass(frozen=True)
class PaymentResult:
    """
    Outcome of a payment request as seen by the caller.

    Attributes:
        payment_id: Payment id, or ``fallback-<order id>`` for a fallback result
        status: Payment status string (COMPLETED, FAILED, PENDING)
        order_id: Order the payment belongs to, when known
        amount: Charged amount, when known
        created_at: When the payment was created, when known
        completed_at: When the payment left PENDING, when known
        fallback: True when the result was produced without reaching the service
    """

    payment_id: str
    status: str
    order_id: str | None = None
    amount: Money | None = None
    created_at: datetime | None = None
    completed_at: datetime | None = None
    fallback: bool = False

    @property
    def is_completed(self) -> bool:
        return self.status.upper() == COMPLETED_STATUS

    @classmethod
    def from_payment(cls, payment: Payment) -> PaymentResult:
        return cls(
            payment_id=payment.payment_id,
            status=payment.status.value,
            order_id=payment.order_id,
            amount=payment.amount,
            created_at=payment.created_at,
            completed_at=payment.completed_at,
        )

    @classmethod
    def fallback_for(cls, order_id: str) -> PaymentResult:
        return cls(
            payment_id=f"fallback-{order_id}",
            status=FALLBACK_STATUS,
            order_id=order_id,
            fallback=True,
        )


@runtime_checkable
class PaymentPort(Protocol):
    async def process_payment(self, order_id: str, amount: Money) -> PaymentResult:
        """Charge ``amount`` for ``order_id``."""
        ...


@dataclass
class PaymentClientConfig:
    """
    Configuration for the HTTP payment client.

    Attributes:
        base_url: Base URL of the payment service
        timeout: Request timeout in seconds
    """

    base_url: str = "http://localhost:8083"
    timeout: float = 5.0

    def __post_init__(self) -> None:
        if not self.base_url or not self.base_url.strip():
            raise ValueError("base_url must not be empty")
        if not self.base_url.startswith(("http://", "https://")):
            raise ValueError(f"base_url must start with http:// or https://, got {self.base_url!r}")
        if self.timeout <= 0:
            raise ValueError(f"timeout must be positive, got {self.timeout}")
        self.base_url = self.base_url.rstrip("/")


class _MoneyBody(BaseModel):
    amount: float
    currency: str


class _PaymentResponseBody(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    id: str
    order_id: str
    status: str
    amount: _MoneyBody | None = None
    created_at: datetime | None = None
    completed_at: datetime | None = None


class HttpPaymentClient:
    """
    Payment port backed by the payment service's REST API.

    Non-2xx responses raise PaymentServiceError. httpx timeouts and network
    errors propagate unchanged; both are transient.

    Example:
        >>> async with HttpPaymentClient(PaymentClientConfig("http://payments:8083")) as client:
        ...     result = await client.process_payment("ord-1", Money.of("59.98", "USD"))
    """

    def __init__(
        self,
        config: PaymentClientConfig | None = None,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        self._config = config or PaymentClientConfig()
        self._client = httpx.AsyncClient(
            base_url=self._config.base_url,
            timeout=httpx.Timeout(self._config.timeout),
            transport=transport,
        )
        self._tracer = tracer or create_tracer(__name__, enable_tracing)

    @property
    def config(self) -> PaymentClientConfig:
        return self._config

    async def process_payment(self, order_id: str, amount: Money) -> PaymentResult:
        body = {
            "orderId": order_id,
            "amount": amount.model_dump(mode="json"),
        }
        url = f"{self._config.base_url}{PAYMENTS_PATH}"
        with self._tracer.span_with_kind(
            "choreography.payment.http",
            SpanKindEnum.CLIENT,
            {ATTR_HTTP_METHOD: "POST", ATTR_HTTP_URL: url, ATTR_ORDER_ID: order_id},
        ) as span:
            response = await self._client.post(PAYMENTS_PATH, json=body)
            if span is not None:
                span.set_attribute(ATTR_HTTP_STATUS_CODE, response.status_code)

        if not response.is_success:
            logger.warning(
                "Payment service returned %d for order %s",
                response.status_code,
                order_id,
                extra={"order_id": order_id, "status_code": response.status_code},
            )
            raise PaymentServiceError(response.status_code, response.text[:200])

        return self._parse(response)

    @staticmethod
    def _parse(response: httpx.Response) -> PaymentResult:
        try:
            parsed = _PaymentResponseBody.model_validate(response.json())
        except (ValueError, pydantic.ValidationError) as e:
            detail = (
                describe_validation_error(e)
                if isinstance(e, pydantic.ValidationError)
                else "response body is not JSON"
            )
            raise PaymentServiceError(response.status_code, f"invalid response: {detail}") from e
        return PaymentResult(
            payment_id=parsed.id,
            status=parsed.status,
            order_id=parsed.order_id,
            amount=Money.of(parsed.amount.amount, parsed.amount.currency) if parsed.amount else None,
            created_at=parsed.created_at,
            completed_at=parsed.completed_at,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> HttpPaymentClient:
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.aclose()


class LocalPaymentClient:
    """Payment port that calls a PaymentService in the same process."""

    def __init__(self, payment_service: PaymentService) -> None:
        self._payment_service = payment_service

    async def process_payment(self, order_id: str, amount: Money) -> PaymentResult:
        payment = await self._payment_service.process_payment(order_id, amount)
        return PaymentResult.from_payment(payment)


class ResilientPaymentClient:
    """
    Payment port decorated with bounded retry and a circuit breaker.

    Each attempt goes through the breaker, and the attempts are retried on
    transient errors. When the breaker rejects the call or the attempts are
    exhausted, a FAILED fallback result is returned. Invalid input raises
    DomainValidationError before anything is called.

    Example:
        >>> client = ResilientPaymentClient(
        ...     HttpPaymentClient(config),
        ...     CircuitBreaker("payment-service"),
        ... )
        >>> result = await client.process_payment("ord-1", Money.of("59.98", "USD"))
    """

    def __init__(
        self,
        port: PaymentPort,
        breaker: CircuitBreaker | None = None,
        retry_config: RetryConfig | None = None,
        *,
        retryable_exceptions: tuple[type[BaseException], ...] = TRANSIENT_EXCEPTIONS,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._port = port
        self._breaker = breaker or CircuitBreaker("payment-service")
        self._retry_config = retry_config or RetryConfig(max_attempts=3, wait_seconds=0.5)
        self._retryable_exceptions = retryable_exceptions
        self._sleep = sleep
        self._tracer = tracer or create_tracer(__name__, enable_tracing)

    @property
    def breaker(self) -> CircuitBreaker:
        return self._breaker

    async def process_payment(self, order_id: str, amount: Money) -> PaymentResult:
        order_id = require_identifier(order_id, "order_id")
        if not amount.is_positive():
            raise DomainValidationError(f"payment amount must be positive, got {amount}")

        with self._tracer.span(
            "choreography.payment.process",
            {ATTR_ORDER_ID: order_id, ATTR_CIRCUIT_NAME: self._breaker.name},
        ) as span:
            try:
                result = await retry_async(
                    lambda: self._breaker.execute(
                        lambda: self._port.process_payment(order_id, amount),
                        operation_name="process_payment",
                    ),
                    self._retry_config,
                    retryable_exceptions=self._retryable_exceptions,
                    operation_name="process_payment",
                    sleep=self._sleep,
                )
            except (CircuitBreakerOpenError, RetryError) as e:
                logger.warning(
                    "Payment fallback triggered for order %s: %s",
                    order_id,
                    e,
                    extra={
                        "order_id": order_id,
                        "circuit": self._breaker.name,
                        "circuit_state": self._breaker.state.value,
                        "error_type": type(e).__name__,
                    },
                )
                result = PaymentResult.fallback_for(order_id)
            finally:
                if span is not None:
                    span.set_attribute(ATTR_CIRCUIT_STATE, self._breaker.state.value)

        return result


__all__ = [
    "COMPLETED_STATUS",
    "FALLBACK_STATUS",
    "HttpPaymentClient",
    "LocalPaymentClient",
    "PAYMENTS_PATH",
    "PaymentClientConfig",
    "PaymentPort",
    "PaymentResult",
    "ResilientPaymentClient",
]
