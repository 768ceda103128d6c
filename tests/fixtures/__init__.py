"""
Shared test fixtures for the choreography tests.

Usage:
    from tests.fixtures import (
        PRODUCT_ID,
        RecordingBroker,
        ScriptedPaymentPort,
        SleepRecorder,
        make_catalog,
        make_envelope,
        make_order,
    )
"""

from tests.fixtures.builders import (
    PRODUCT_ID,
    UNIT_PRICE,
    make_catalog,
    make_envelope,
    make_order,
    order_created_payload,
    payment_completed_payload,
    shipment_arranged_payload,
)
from tests.fixtures.doubles import (
    FailingBroker,
    FlakyBroker,
    PublishedMessage,
    RecordingBroker,
    ScriptedPaymentPort,
    SleepRecorder,
    sequential_ids,
)

__all__ = [
    "FailingBroker",
    "FlakyBroker",
    "PRODUCT_ID",
    "PublishedMessage",
    "RecordingBroker",
    "ScriptedPaymentPort",
    "SleepRecorder",
    "UNIT_PRICE",
    "make_catalog",
    "make_envelope",
    "make_order",
    "order_created_payload",
    "payment_completed_payload",
    "sequential_ids",
    "shipment_arranged_payload",
]
