"""FastAPI routes for orders and payments."""

from fastapi import APIRouter, Depends, HTTPException, Request

from choreography.api.schemas import OrderRequest, OrderResponse, PaymentRequest, PaymentResponse
from choreography.services.order import CreateOrderCommand, OrderService
from choreography.services.payment import PaymentService


def get_order_service(request: Request) -> OrderService:
    service = getattr(request.app.state, "order_service", None)
    if service is None:
        raise HTTPException(status_code=503, detail="Order service is not configured")
    return service


def get_payment_service(request: Request) -> PaymentService:
    service = getattr(request.app.state, "payment_service", None)
    if service is None:
        raise HTTPException(status_code=503, detail="Payment service is not configured")
    return service


# ---------------------------------------------------------------------------
# Order Router
# ---------------------------------------------------------------------------
orders_router = APIRouter(prefix="/api/v1/orders", tags=["orders"])


@orders_router.post("", status_code=201, response_model=OrderResponse)
async def create_order(
    body: OrderRequest,
    service: OrderService = Depends(get_order_service),
) -> OrderResponse:
    """Place an order. Payment failures leave the order PAYMENT_PENDING."""
    command = CreateOrderCommand(
        customer_id=body.customer_id,
        product_id=body.product_id,
        quantity=body.quantity,
    )
    order = await service.create_order(command)
    return OrderResponse.from_order(order)


@orders_router.get("/{order_id}", response_model=OrderResponse)
async def get_order(
    order_id: str,
    service: OrderService = Depends(get_order_service),
) -> OrderResponse:
    order = await service.find_by_id(order_id)
    if order is None:
        raise HTTPException(status_code=404, detail=f"Order {order_id} not found")
    return OrderResponse.from_order(order)


# ---------------------------------------------------------------------------
# Payment Router
# ---------------------------------------------------------------------------
payments_router = APIRouter(prefix="/api/v1/payments", tags=["payments"])


@payments_router.post("", status_code=201, response_model=PaymentResponse)
async def process_payment(
    body: PaymentRequest,
    service: PaymentService = Depends(get_payment_service),
) -> PaymentResponse:
    """Charge an order. Repeating the request for the same order returns the same payment."""
    payment = await service.process_payment(body.order_id, body.amount.to_money())
    return PaymentResponse.from_payment(payment)


@payments_router.get("/{payment_id}", response_model=PaymentResponse)
async def get_payment(
    payment_id: str,
    service: PaymentService = Depends(get_payment_service),
) -> PaymentResponse:
    payment = await service.find_by_id(payment_id)
    if payment is None:
        raise HTTPException(status_code=404, detail=f"Payment {payment_id} not found")
    return PaymentResponse.from_payment(payment)


__all__ = ["get_order_service", "get_payment_service", "orders_router", "payments_router"]
