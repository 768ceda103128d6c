"""Unit tests for PaymentService."""

import asyncio
import json

import pytest

from choreography.domain.payment import Payment, PaymentStatus
from choreography.domain.values import Money
from choreography.events import EventPublisher, EventType, ServiceName, Topic
from choreography.exceptions import DomainValidationError
from choreography.repositories import InMemoryRepository
from choreography.services.payment import PaymentService
from tests.fixtures import (
    RecordingBroker,
    make_envelope,
    order_created_payload,
    sequential_ids,
)

AMOUNT = Money.of("59.98", "USD")


@pytest.fixture
def service(
    payment_repo: InMemoryRepository[Payment], recording_broker: RecordingBroker
) -> PaymentService:
    return PaymentService(
        payment_repo,
        EventPublisher(recording_broker, ServiceName.PAYMENT),
        id_factory=sequential_ids("pay"),
    )


class TestProcessPayment:
    @pytest.mark.asyncio
    async def test_completes_payment(
        self, service: PaymentService, payment_repo: InMemoryRepository[Payment]
    ) -> None:
        """A new payment is stored PENDING, then COMPLETED."""
        payment = await service.process_payment("ord-1", AMOUNT)

        assert payment.payment_id == "pay-1"
        assert payment.status is PaymentStatus.COMPLETED
        assert payment.amount == AMOUNT
        assert [p.status for p in payment_repo.history("pay-1")] == [
            PaymentStatus.PENDING,
            PaymentStatus.COMPLETED,
        ]

    @pytest.mark.asyncio
    async def test_idempotent_per_order(self, service: PaymentService) -> None:
        """Paying the same order twice returns the first payment."""
        first = await service.process_payment("ord-1", AMOUNT)
        second = await service.process_payment("ord-1", AMOUNT)
        assert second == first

    @pytest.mark.asyncio
    async def test_concurrent_requests_create_one_payment(
        self, service: PaymentService, payment_repo: InMemoryRepository[Payment]
    ) -> None:
        """REST and consumer paths racing on one order converge on a single payment."""
        results = await asyncio.gather(
            *(service.process_payment("ord-1", AMOUNT) for _ in range(5))
        )
        assert len({p.payment_id for p in results}) == 1
        assert len(payment_repo) == 1

    @pytest.mark.asyncio
    async def test_different_orders_get_different_payments(self, service: PaymentService) -> None:
        first = await service.process_payment("ord-1", AMOUNT)
        second = await service.process_payment("ord-2", AMOUNT)
        assert first.payment_id != second.payment_id
        assert await service.find_by_order_id("ord-2") == second
        assert await service.find_by_id(first.payment_id) == first

    @pytest.mark.asyncio
    async def test_zero_amount_rejected(self, service: PaymentService) -> None:
        with pytest.raises(DomainValidationError, match="positive"):
            await service.process_payment("ord-1", Money.zero("USD"))

    @pytest.mark.asyncio
    async def test_blank_order_rejected(self, service: PaymentService) -> None:
        with pytest.raises(DomainValidationError, match="order_id"):
            await service.process_payment("", AMOUNT)


class TestHandleOrderCreated:
    @pytest.mark.asyncio
    async def test_publishes_payment_completed(
        self, service: PaymentService, recording_broker: RecordingBroker
    ) -> None:
        """The payment.completed event keeps the order key and the correlation id."""
        envelope = make_envelope(EventType.ORDER_CREATED, order_created_payload())

        payment = await service.handle_order_created(envelope)

        [message] = recording_broker.published
        assert message.destination == Topic.PAYMENT_COMPLETED
        assert message.key == "ord-1"
        document = json.loads(message.body)
        assert document["correlationId"] == "corr-1"
        assert document["source"] == "payment-service"
        assert document["payload"] == {
            "paymentId": payment.payment_id,
            "orderId": "ord-1",
            "amount": {"amount": 59.98, "currency": "USD"},
            "status": "COMPLETED",
        }

    @pytest.mark.asyncio
    async def test_existing_payment_is_reannounced(
        self, service: PaymentService, recording_broker: RecordingBroker
    ) -> None:
        """An order paid over REST still gets payment.completed from the event path."""
        paid = await service.process_payment("ord-1", AMOUNT)
        envelope = make_envelope(EventType.ORDER_CREATED, order_created_payload())

        payment = await service.handle_order_created(envelope)

        assert payment == paid
        assert len(recording_broker.published) == 1
