"""
FastAPI application for the order and payment services.

Usage:
    app = create_app(order_service=system.order_service, payment_service=system.payment_service)
    uvicorn.run(app, host="0.0.0.0", port=8080)
"""

import logging
from datetime import UTC, datetime

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from choreography.api.faults import FaultSimulationConfig, install_fault_simulation
from choreography.api.routes import orders_router, payments_router
from choreography.exceptions import (
    AggregateNotFoundError,
    DomainValidationError,
    IllegalStateTransitionError,
    InsufficientStockError,
)
from choreography.services.order import OrderService
from choreography.services.payment import PaymentService

logger = logging.getLogger(__name__)


def _error(status_code: int, error: str, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={
            "error": error,
            "message": message,
            "timestamp": datetime.now(UTC).isoformat(),
        },
    )


async def _bad_request(request: Request, exc: Exception) -> JSONResponse:
    return _error(400, "Bad Request", str(exc))


async def _conflict(request: Request, exc: Exception) -> JSONResponse:
    logger.info(
        "Rejected %s %s: %s",
        request.method,
        request.url.path,
        exc,
        extra={"path": request.url.path, "error_type": type(exc).__name__},
    )
    return _error(409, "Conflict", str(exc))


async def _not_found(request: Request, exc: Exception) -> JSONResponse:
    return _error(404, "Not Found", str(exc))


def create_app(
    order_service: OrderService | None = None,
    payment_service: PaymentService | None = None,
    *,
    fault_simulation: FaultSimulationConfig | None = None,
    title: str = "Order Choreography API",
) -> FastAPI:
    """
    Build the HTTP application.

    Either service may be omitted; its routes then answer 503.

    Args:
        order_service: Service behind /api/v1/orders
        payment_service: Service behind /api/v1/payments
        fault_simulation: Optional fault injection for the payment routes
        title: OpenAPI title
    """
    app = FastAPI(title=title)
    app.state.order_service = order_service
    app.state.payment_service = payment_service

    # Starlette resolves handlers along the exception's MRO, most specific first
    app.add_exception_handler(InsufficientStockError, _conflict)
    app.add_exception_handler(IllegalStateTransitionError, _conflict)
    app.add_exception_handler(DomainValidationError, _bad_request)
    app.add_exception_handler(AggregateNotFoundError, _not_found)

    app.include_router(orders_router)
    app.include_router(payments_router)

    if fault_simulation is not None:
        install_fault_simulation(app, fault_simulation)

    @app.get("/health")
    async def health():
        return {
            "status": "ok",
            "services": {
                "order": order_service is not None,
                "payment": payment_service is not None,
            },
        }

    return app


__all__ = ["create_app"]
