"""Notification aggregate: PENDING -> SENT | FAILED, and FAILED -> SENT on a resend."""

from __future__ import annotations

from datetime import datetime
from enum import StrEnum
from typing import Annotated, ClassVar

from pydantic import AfterValidator, Field

from choreography.domain.base import Aggregate, utcnow
from choreography.domain.values import NotificationId, OrderId


def _message_not_blank(value: str) -> str:
    if not value.strip():
        raise ValueError("message must not be blank")
    return value


class NotificationStatus(StrEnum):
    PENDING = "PENDING"
    SENT = "SENT"
    FAILED = "FAILED"


class NotificationType(StrEnum):
    PAYMENT_CONFIRMED = "PAYMENT_CONFIRMED"


class Notification(Aggregate):
    aggregate_type: ClassVar[str] = "Notification"

    notification_id: NotificationId
    order_id: OrderId
    type: NotificationType
    message: Annotated[str, AfterValidator(_message_not_blank)]
    status: NotificationStatus = NotificationStatus.PENDING
    event_id: str | None = None
    created_at: datetime = Field(default_factory=utcnow)

    @property
    def aggregate_id(self) -> str:
        return self.notification_id

    @classmethod
    def create(
        cls,
        notification_id: str,
        order_id: str,
        type: NotificationType,
        message: str,
        event_id: str | None = None,
    ) -> Notification:
        return cls._build(
            notification_id=notification_id,
            order_id=order_id,
            type=type,
            message=message,
            status=NotificationStatus.PENDING,
            event_id=event_id,
            created_at=utcnow(),
        )

    @classmethod
    def payment_confirmed(
        cls,
        notification_id: str,
        order_id: str,
        payment_id: str,
        event_id: str | None = None,
    ) -> Notification:
        """Create the PENDING notification answering a payment.completed event."""
        return cls.create(
            notification_id,
            order_id,
            NotificationType.PAYMENT_CONFIRMED,
            f"Payment {payment_id} completed for order {order_id}",
            event_id,
        )

    def mark_sent(self) -> Notification:
        # a FAILED notification is sent again when its event is retried
        if self.status is not NotificationStatus.FAILED:
            self._require_status("mark sent", NotificationStatus.PENDING)
        return self._evolve(status=NotificationStatus.SENT)

    def mark_failed(self) -> Notification:
        self._require_status("mark failed", NotificationStatus.PENDING)
        return self._evolve(status=NotificationStatus.FAILED)


__all__ = ["Notification", "NotificationStatus", "NotificationType"]
