"""
Payment service.

The REST endpoint and the order.created consumer share process_payment, which
is idempotent per order id: both paths converge on a single Payment.
"""

import asyncio
import logging
import weakref
from collections.abc import Callable

from choreography.domain.payment import Payment, PaymentStatus
from choreography.domain.values import Money, require_identifier
from choreography.events.envelope import EventEnvelope, new_id
from choreography.events.payloads import OrderCreatedPayload, PaymentCompletedPayload
from choreography.events.publisher import EventPublisher
from choreography.events.types import EventType
from choreography.exceptions import DomainValidationError
from choreography.repositories import Repository

logger = logging.getLogger(__name__)


class PaymentService:
    def __init__(
        self,
        repository: Repository[Payment],
        publisher: EventPublisher,
        *,
        id_factory: Callable[[], str] = new_id,
    ) -> None:
        self._repository = repository
        self._publisher = publisher
        self._id_factory = id_factory
        self._order_locks: weakref.WeakValueDictionary[str, asyncio.Lock] = (
            weakref.WeakValueDictionary()
        )

    async def process_payment(self, order_id: str, amount: Money) -> Payment:
        """
        Charge an order, or return the payment already made for it.

        Args:
            order_id: Order being paid
            amount: Amount to charge (must be positive)

        Returns:
            The completed payment for the order

        Raises:
            DomainValidationError: If the order id is blank or the amount is not positive
        """
        order_id = require_identifier(order_id, "order_id")
        if not amount.is_positive():
            raise DomainValidationError(f"payment amount must be positive, got {amount}")

        lock = self._order_locks.get(order_id)
        if lock is None:
            lock = asyncio.Lock()
            self._order_locks[order_id] = lock

        async with lock:
            existing = await self.find_by_order_id(order_id)
            if existing is not None:
                logger.info(
                    "Order %s already has payment %s",
                    order_id,
                    existing.payment_id,
                    extra={"order_id": order_id, "payment_id": existing.payment_id},
                )
                return existing

            payment = Payment.create(self._id_factory(), order_id, amount)
            payment = await self._repository.save(payment)
            payment = await self._repository.save(payment.complete())

        logger.info(
            "Processed payment %s for order %s",
            payment.payment_id,
            order_id,
            extra={
                "order_id": order_id,
                "payment_id": payment.payment_id,
                "amount": str(amount),
                "status": payment.status.value,
            },
        )
        return payment

    async def handle_order_created(self, envelope: EventEnvelope) -> Payment:
        """Charge the order announced by an order.created envelope and publish payment.completed."""
        payload: OrderCreatedPayload = envelope.payload
        payment = await self.process_payment(payload.order_id, payload.total_amount)

        if payment.status is not PaymentStatus.COMPLETED:
            logger.warning(
                "Payment %s for order %s is %s, not publishing payment.completed",
                payment.payment_id,
                payload.order_id,
                payment.status,
                extra={"order_id": payload.order_id, "payment_id": payment.payment_id},
            )
            return payment

        await self._publisher.publish(
            EventType.PAYMENT_COMPLETED,
            PaymentCompletedPayload(
                payment_id=payment.payment_id,
                order_id=payment.order_id,
                amount=payment.amount,
                status=payment.status.value,
            ),
            key=payment.order_id,
            correlation_id=envelope.correlation_id,
        )
        return payment

    async def find_by_id(self, payment_id: str) -> Payment | None:
        return await self._repository.find_by_id(payment_id)

    async def find_by_order_id(self, order_id: str) -> Payment | None:
        return await self._repository.find_first(lambda p: p.order_id == order_id)


__all__ = ["PaymentService"]
