"""Unit tests for the Order, Payment, Notification and Shipment state machines."""

import random

import pytest

from choreography.domain.notification import Notification, NotificationStatus, NotificationType
from choreography.domain.order import Order, OrderItem, OrderStatus
from choreography.domain.payment import Payment, PaymentStatus
from choreography.domain.shipment import Shipment, ShipmentStatus, generate_tracking_number
from choreography.domain.values import Money
from choreography.exceptions import DomainValidationError, IllegalStateTransitionError
from tests.fixtures import PRODUCT_ID, UNIT_PRICE, make_order

# =============================================================================
# Order
# =============================================================================


class TestOrder:
    def test_create_starts_in_created(self) -> None:
        """A new order is CREATED with equal created and updated timestamps."""
        order = make_order()
        assert order.status is OrderStatus.CREATED
        assert order.created_at == order.updated_at
        assert order.aggregate_id == "ord-1"

    def test_total_is_derived_from_items(self) -> None:
        """The total is unit price times quantity."""
        assert make_order(quantity=2).total_amount == Money.of("59.98", "USD")

    def test_total_sums_multiple_items(self) -> None:
        """Every line contributes to the total."""
        items = [
            OrderItem(product_id="prod-1", quantity=1, unit_price=Money.of("10.00", "USD")),
            OrderItem(product_id="prod-2", quantity=3, unit_price=Money.of("2.50", "USD")),
        ]
        order = Order.create("ord-2", "cust-1", items)
        assert order.total_amount == Money.of("17.50", "USD")

    def test_full_lifecycle(self) -> None:
        """CREATED -> PAYMENT_PENDING -> PAID -> SHIPPED."""
        order = make_order()
        order = order.mark_payment_pending()
        assert order.status is OrderStatus.PAYMENT_PENDING
        order = order.mark_paid()
        assert order.status is OrderStatus.PAID
        order = order.mark_shipped()
        assert order.status is OrderStatus.SHIPPED

    def test_transition_returns_new_instance(self) -> None:
        """Transitions leave the original untouched."""
        order = make_order()
        pending = order.mark_payment_pending()
        assert order.status is OrderStatus.CREATED
        assert pending is not order
        assert pending.updated_at >= order.updated_at

    def test_cannot_pay_created_order(self) -> None:
        """mark_paid requires PAYMENT_PENDING."""
        order = make_order()
        with pytest.raises(IllegalStateTransitionError) as exc_info:
            order.mark_paid()
        error = exc_info.value
        assert error.aggregate_type == "Order"
        assert error.aggregate_id == "ord-1"
        assert error.current_status == "CREATED"
        assert error.expected_status == "PAYMENT_PENDING"

    def test_cannot_ship_unpaid_order(self) -> None:
        """mark_shipped requires PAID."""
        with pytest.raises(IllegalStateTransitionError):
            make_order(status=OrderStatus.PAYMENT_PENDING).mark_shipped()

    def test_cannot_ship_twice(self) -> None:
        """A shipped order is terminal."""
        with pytest.raises(IllegalStateTransitionError):
            make_order(status=OrderStatus.SHIPPED).mark_shipped()

    def test_order_requires_items(self) -> None:
        """An order without items is invalid."""
        with pytest.raises(DomainValidationError, match="at least one item"):
            Order.create("ord-1", "cust-1", [])

    def test_items_must_share_currency(self) -> None:
        """Mixed currencies are rejected at construction."""
        items = [
            OrderItem(product_id="a", quantity=1, unit_price=Money.of("1", "USD")),
            OrderItem(product_id="b", quantity=1, unit_price=Money.of("1", "EUR")),
        ]
        with pytest.raises(DomainValidationError, match="one currency"):
            Order.create("ord-1", "cust-1", items)

    def test_blank_customer_rejected(self) -> None:
        """Identifiers must not be blank."""
        item = OrderItem(product_id=PRODUCT_ID, quantity=1, unit_price=UNIT_PRICE)
        with pytest.raises(DomainValidationError, match="customer_id"):
            Order.create("ord-1", "  ", [item])


# =============================================================================
# Payment
# =============================================================================


class TestPayment:
    def test_create_is_pending_without_completion_time(self) -> None:
        payment = Payment.create("pay-1", "ord-1", Money.of("59.98", "USD"))
        assert payment.status is PaymentStatus.PENDING
        assert payment.completed_at is None

    def test_complete_sets_completed_at(self) -> None:
        """Completing stamps completed_at."""
        payment = Payment.create("pay-1", "ord-1", Money.of("59.98", "USD")).complete()
        assert payment.status is PaymentStatus.COMPLETED
        assert payment.completed_at is not None
        assert payment.completed_at >= payment.created_at

    def test_fail_sets_completed_at(self) -> None:
        payment = Payment.create("pay-1", "ord-1", Money.of("1", "USD")).fail()
        assert payment.status is PaymentStatus.FAILED
        assert payment.completed_at is not None

    def test_completed_payment_is_terminal(self) -> None:
        """A completed payment cannot complete or fail again."""
        payment = Payment.create("pay-1", "ord-1", Money.of("1", "USD")).complete()
        with pytest.raises(IllegalStateTransitionError):
            payment.complete()
        with pytest.raises(IllegalStateTransitionError):
            payment.fail()

    def test_zero_amount_rejected(self) -> None:
        """Payments are strictly positive."""
        with pytest.raises(DomainValidationError, match="positive"):
            Payment.create("pay-1", "ord-1", Money.zero("USD"))


# =============================================================================
# Notification
# =============================================================================


class TestNotification:
    def test_payment_confirmed_message(self) -> None:
        """The confirmation names the payment and the order."""
        notification = Notification.payment_confirmed("ntf-1", "ord-1", "pay-1")
        assert notification.type is NotificationType.PAYMENT_CONFIRMED
        assert notification.status is NotificationStatus.PENDING
        assert notification.message == "Payment pay-1 completed for order ord-1"

    def test_mark_sent(self) -> None:
        notification = Notification.payment_confirmed("ntf-1", "ord-1", "pay-1").mark_sent()
        assert notification.status is NotificationStatus.SENT

    def test_mark_failed(self) -> None:
        notification = Notification.payment_confirmed("ntf-1", "ord-1", "pay-1").mark_failed()
        assert notification.status is NotificationStatus.FAILED

    def test_failed_can_be_resent(self) -> None:
        """A failed notification goes to SENT when its event is retried."""
        notification = Notification.payment_confirmed("ntf-1", "ord-1", "pay-1", "evt-1")
        resent = notification.mark_failed().mark_sent()
        assert resent.status is NotificationStatus.SENT
        assert resent.event_id == "evt-1"

    def test_failed_cannot_fail_again(self) -> None:
        notification = Notification.payment_confirmed("ntf-1", "ord-1", "pay-1").mark_failed()
        with pytest.raises(IllegalStateTransitionError):
            notification.mark_failed()

    def test_sent_is_terminal(self) -> None:
        """A sent notification cannot fail afterwards."""
        notification = Notification.payment_confirmed("ntf-1", "ord-1", "pay-1").mark_sent()
        with pytest.raises(IllegalStateTransitionError):
            notification.mark_failed()

    def test_blank_message_rejected(self) -> None:
        with pytest.raises(DomainValidationError):
            Notification.create("ntf-1", "ord-1", NotificationType.PAYMENT_CONFIRMED, " ")


# =============================================================================
# Shipment
# =============================================================================


class TestShipment:
    def test_lifecycle(self) -> None:
        """PENDING -> IN_TRANSIT -> DELIVERED."""
        shipment = Shipment.create("ship-1", "ord-1")
        assert shipment.status is ShipmentStatus.PENDING
        assert shipment.tracking_number is None

        shipment = shipment.ship("TRK-1-1")
        assert shipment.status is ShipmentStatus.IN_TRANSIT
        assert shipment.tracking_number == "TRK-1-1"

        shipment = shipment.deliver()
        assert shipment.status is ShipmentStatus.DELIVERED
        assert shipment.tracking_number == "TRK-1-1"

    def test_ship_requires_tracking_number(self) -> None:
        """A shipment in transit must carry a tracking number."""
        with pytest.raises(DomainValidationError, match="tracking number"):
            Shipment.create("ship-1", "ord-1").ship("  ")

    def test_cannot_deliver_pending_shipment(self) -> None:
        with pytest.raises(IllegalStateTransitionError):
            Shipment.create("ship-1", "ord-1").deliver()

    def test_cannot_ship_twice(self) -> None:
        with pytest.raises(IllegalStateTransitionError):
            Shipment.create("ship-1", "ord-1").ship("TRK-1-1").ship("TRK-1-2")


class TestTrackingNumber:
    def test_format(self) -> None:
        """TRK-<epoch millis>-<suffix>."""
        number = generate_tracking_number(clock=lambda: 1700000000.5, rng=random.Random(7))
        prefix, millis, suffix = number.split("-")
        assert prefix == "TRK"
        assert millis == "1700000000500"
        assert 0 <= int(suffix) <= 9999

    def test_default_sources(self) -> None:
        """Without arguments the wall clock and module random are used."""
        assert generate_tracking_number().startswith("TRK-")
