"""Shipment aggregate: PENDING -> IN_TRANSIT -> DELIVERED."""

from __future__ import annotations

import random
import time
from collections.abc import Callable
from datetime import datetime
from enum import StrEnum
from typing import ClassVar, Self

from pydantic import Field, model_validator

from choreography.domain.base import Aggregate, utcnow
from choreography.domain.values import OrderId, ShipmentId


class ShipmentStatus(StrEnum):
    PENDING = "PENDING"
    IN_TRANSIT = "IN_TRANSIT"
    DELIVERED = "DELIVERED"


def generate_tracking_number(
    clock: Callable[[], float] = time.time,
    rng: random.Random | None = None,
) -> str:
    """
    Build a carrier tracking number of the form ``TRK-<epoch millis>-<0..9999>``.

    Args:
        clock: Returns the current time in seconds since the epoch
        rng: Random source for the suffix (module-level random if None)
    """
    millis = int(clock() * 1000)
    suffix = (rng or random).randint(0, 9999)  # nosec B311 - not security sensitive
    return f"TRK-{millis}-{suffix}"


class Shipment(Aggregate):
    """
    Shipment owned by the shipping service.

    A tracking number is mandatory once the shipment has left PENDING.
    """

    aggregate_type: ClassVar[str] = "Shipment"

    shipment_id: ShipmentId
    order_id: OrderId
    tracking_number: str | None = None
    status: ShipmentStatus = ShipmentStatus.PENDING
    created_at: datetime = Field(default_factory=utcnow)

    @model_validator(mode="after")
    def _check_tracking_number(self) -> Self:
        if self.status is not ShipmentStatus.PENDING:
            if self.tracking_number is None or not self.tracking_number.strip():
                raise ValueError(f"tracking number is required in {self.status.value} status")
        return self

    @property
    def aggregate_id(self) -> str:
        return self.shipment_id

    @classmethod
    def create(cls, shipment_id: str, order_id: str) -> Shipment:
        return cls._build(
            shipment_id=shipment_id,
            order_id=order_id,
            tracking_number=None,
            status=ShipmentStatus.PENDING,
            created_at=utcnow(),
        )

    def ship(self, tracking_number: str) -> Shipment:
        self._require_status("ship", ShipmentStatus.PENDING)
        return self._evolve(status=ShipmentStatus.IN_TRANSIT, tracking_number=tracking_number)

    def deliver(self) -> Shipment:
        self._require_status("deliver", ShipmentStatus.IN_TRANSIT)
        return self._evolve(status=ShipmentStatus.DELIVERED)


__all__ = ["Shipment", "ShipmentStatus", "generate_tracking_number"]
