"""
Base class for immutable aggregate state machines.

Aggregates are frozen pydantic models. A transition never mutates the
instance it is called on; it validates a new instance with the changed
fields and returns it. Invalid transitions raise IllegalStateTransitionError
and leave the original untouched.
"""

from __future__ import annotations

from datetime import UTC, datetime
from enum import Enum
from typing import Any, ClassVar, Self

import pydantic
from pydantic import BaseModel, ConfigDict

from choreography.exceptions import DomainValidationError, IllegalStateTransitionError


def utcnow() -> datetime:
    """Current time as a timezone-aware UTC datetime."""
    return datetime.now(UTC)


def describe_validation_error(error: pydantic.ValidationError) -> str:
    """Flatten a pydantic ValidationError into a single readable line."""
    parts = []
    for detail in error.errors():
        location = ".".join(str(part) for part in detail.get("loc", ())) or "value"
        message = str(detail.get("msg", "invalid"))
        message = message.removeprefix("Value error, ")
        parts.append(f"{location}: {message}")
    return "; ".join(parts)


class Aggregate(BaseModel):
    """
    Base class for choreography aggregates.

    Subclasses declare their fields, a ``status`` field holding an Enum member,
    and implement ``aggregate_id``. Construction goes through ``_build`` so that
    pydantic validation failures surface as DomainValidationError.
    """

    model_config = ConfigDict(frozen=True)

    aggregate_type: ClassVar[str] = "Aggregate"

    @property
    def aggregate_id(self) -> str:
        raise NotImplementedError

    @classmethod
    def _build(cls, **fields: Any) -> Self:
        try:
            return cls(**fields)
        except pydantic.ValidationError as e:
            raise DomainValidationError(
                f"Invalid {cls.aggregate_type}: {describe_validation_error(e)}"
            ) from e

    def _evolve(self, **changes: Any) -> Self:
        current = {name: getattr(self, name) for name in type(self).model_fields}
        current.update(changes)
        return type(self)._build(**current)

    def _require_status(self, action: str, expected: Enum) -> None:
        status = getattr(self, "status")
        if status != expected:
            raise IllegalStateTransitionError(
                aggregate_type=self.aggregate_type,
                aggregate_id=self.aggregate_id,
                action=action,
                current_status=str(status.value),
                expected_status=str(expected.value),
            )


__all__ = [
    "Aggregate",
    "describe_validation_error",
    "utcnow",
]
