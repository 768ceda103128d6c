"""Clients for synchronous calls between services."""

from choreography.clients.payment import (
    COMPLETED_STATUS,
    FALLBACK_STATUS,
    PAYMENTS_PATH,
    HttpPaymentClient,
    LocalPaymentClient,
    PaymentClientConfig,
    PaymentPort,
    PaymentResult,
    ResilientPaymentClient,
)

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
