"""
Order service.

Creates orders over the synchronous payment hop and moves them forward as
payment and shipment events arrive.
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass

from choreography.clients.payment import PaymentPort
from choreography.domain.order import Order, OrderItem, OrderStatus
from choreography.domain.values import require_identifier
from choreography.events.envelope import new_id
from choreography.events.payloads import (
    OrderCreatedPayload,
    PaymentCompletedPayload,
    ShipmentArrangedPayload,
)
from choreography.events.publisher import EventPublisher
from choreography.events.types import EventType
from choreography.exceptions import (
    DomainValidationError,
    InsufficientStockError,
    OrderAwaitingPaymentError,
)
from choreography.repositories import Repository
from choreography.services.catalog import ProductCatalog

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CreateOrderCommand:
    """
    Request to place an order for a single product.

    Attributes:
        customer_id: Customer placing the order
        product_id: Product being ordered
        quantity: Units ordered (>= 1)
        order_id: Explicit order id (generated if None)
    """

    customer_id: str
    product_id: str
    quantity: int
    order_id: str | None = None

    def __post_init__(self) -> None:
        if isinstance(self.quantity, bool) or self.quantity < 1:
            raise DomainValidationError(f"quantity must be at least 1, got {self.quantity}")


class OrderService:
    """
    Application service for the order context.

    Order creation is best-effort with respect to payment: if the payment
    call does not complete, the order stays PAYMENT_PENDING and creation
    still succeeds. A later payment.completed event reconciles it.
    """

    def __init__(
        self,
        repository: Repository[Order],
        catalog: ProductCatalog,
        payment_port: PaymentPort,
        publisher: EventPublisher,
        *,
        id_factory: Callable[[], str] = new_id,
    ) -> None:
        self._repository = repository
        self._catalog = catalog
        self._payment_port = payment_port
        self._publisher = publisher
        self._id_factory = id_factory

    async def create_order(self, command: CreateOrderCommand) -> Order:
        """
        Place an order, charge it and announce it.

        Raises:
            DomainValidationError: If the command or product is invalid
            InsufficientStockError: If the product does not have enough stock
        """
        customer_id = require_identifier(command.customer_id, "customer_id")
        product_id = require_identifier(command.product_id, "product_id")
        order_id = require_identifier(command.order_id or self._id_factory(), "order_id")

        product = await self._catalog.get_product(product_id)
        if product.stock_quantity < command.quantity:
            raise InsufficientStockError(product_id, command.quantity, product.stock_quantity)

        item = OrderItem(product_id=product_id, quantity=command.quantity, unit_price=product.price)
        order = await self._repository.save(Order.create(order_id, customer_id, [item]))
        order = await self._repository.save(order.mark_payment_pending())

        result = await self._payment_port.process_payment(order_id, order.total_amount)
        if result.is_completed:
            order = order.mark_paid()
        else:
            logger.warning(
                "Payment for order %s did not complete (status %s), leaving it payment pending",
                order_id,
                result.status,
                extra={
                    "order_id": order_id,
                    "payment_id": result.payment_id,
                    "status": result.status,
                },
            )
        order = await self._repository.save(order)

        await self._publisher.publish(
            EventType.ORDER_CREATED,
            OrderCreatedPayload(
                order_id=order.order_id,
                customer_id=order.customer_id,
                product_id=item.product_id,
                quantity=item.quantity,
                total_amount=order.total_amount,
            ),
            key=order.order_id,
        )
        logger.info(
            "Created order %s with status %s",
            order_id,
            order.status,
            extra={
                "order_id": order_id,
                "customer_id": customer_id,
                "status": order.status.value,
                "total_amount": str(order.total_amount),
            },
        )
        return order

    async def find_by_id(self, order_id: str) -> Order | None:
        return await self._repository.find_by_id(order_id)

    async def handle_shipment_arranged(self, payload: ShipmentArrangedPayload) -> Order:
        """
        Mark the order shipped.

        Raises:
            AggregateNotFoundError: If the order is unknown
            OrderAwaitingPaymentError: If the order is PAYMENT_PENDING, so the
                event is retried while payment.completed reconciles it
            IllegalStateTransitionError: If the order is in any other status but PAID
        """
        order = await self._repository.get(payload.order_id)
        if order.status is OrderStatus.PAYMENT_PENDING:
            raise OrderAwaitingPaymentError(order.order_id)
        order = await self._repository.save(order.mark_shipped())
        logger.info(
            "Order %s shipped with tracking number %s",
            order.order_id,
            payload.tracking_number,
            extra={"order_id": order.order_id, "shipment_id": payload.shipment_id},
        )
        return order

    async def handle_payment_completed(self, payload: PaymentCompletedPayload) -> Order:
        """
        Reconcile an order left PAYMENT_PENDING by a payment fallback.

        Orders in any other status, and payments that did not complete, are
        left untouched.
        """
        order = await self._repository.get(payload.order_id)
        if order.status is not OrderStatus.PAYMENT_PENDING or payload.status != "COMPLETED":
            logger.debug(
                "No reconciliation needed for order %s",
                order.order_id,
                extra={"order_id": order.order_id, "status": order.status.value},
            )
            return order

        order = await self._repository.save(order.mark_paid())
        logger.info(
            "Reconciled order %s as paid by payment %s",
            order.order_id,
            payload.payment_id,
            extra={"order_id": order.order_id, "payment_id": payload.payment_id},
        )
        return order


__all__ = ["CreateOrderCommand", "OrderService"]
