"""
Aggregate repositories.

Each service persists exactly one aggregate type through a repository. The
workflow saves an aggregate once in its initial status and again after each
transition; nothing is ever deleted, so the in-memory implementation also
keeps every saved version for inspection.
"""

import asyncio
from collections.abc import Callable
from typing import Generic, Protocol, TypeVar, runtime_checkable

from choreography.domain.base import Aggregate
from choreography.exceptions import AggregateNotFoundError
from choreography.observability import ATTR_AGGREGATE_TYPE, Tracer, create_tracer

TAggregate = TypeVar("TAggregate", bound=Aggregate)


@runtime_checkable
class Repository(Protocol[TAggregate]):
    """
    Protocol for aggregate repositories.

    Implementations must make ``save`` an upsert keyed by ``aggregate_id``.
    """

    async def save(self, aggregate: TAggregate) -> TAggregate:
        """Persist the aggregate and return the stored value."""
        ...

    async def find_by_id(self, aggregate_id: str) -> TAggregate | None:
        """Return the latest saved version, or None if never saved."""
        ...

    async def get(self, aggregate_id: str) -> TAggregate:
        """Return the latest saved version or raise AggregateNotFoundError."""
        ...

    async def find_first(self, predicate: Callable[[TAggregate], bool]) -> TAggregate | None:
        """Return the first stored aggregate matching ``predicate``."""
        ...


class InMemoryRepository(Generic[TAggregate]):
    """
    In-memory repository for one aggregate type.

    Example:
        >>> orders: InMemoryRepository[Order] = InMemoryRepository(Order)
        >>> await orders.save(order)
        >>> await orders.get("ord-1")
    """

    def __init__(
        self,
        aggregate_type: type[TAggregate],
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        self._aggregate_type = aggregate_type
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._latest: dict[str, TAggregate] = {}
        self._history: dict[str, list[TAggregate]] = {}
        self._lock = asyncio.Lock()

    @property
    def aggregate_type(self) -> type[TAggregate]:
        return self._aggregate_type

    async def save(self, aggregate: TAggregate) -> TAggregate:
        with self._tracer.span(
            "choreography.repository.save",
            {ATTR_AGGREGATE_TYPE: self._aggregate_type.aggregate_type},
        ):
            async with self._lock:
                aggregate_id = aggregate.aggregate_id
                self._latest[aggregate_id] = aggregate
                self._history.setdefault(aggregate_id, []).append(aggregate)
                return aggregate

    async def find_by_id(self, aggregate_id: str) -> TAggregate | None:
        async with self._lock:
            return self._latest.get(aggregate_id)

    async def get(self, aggregate_id: str) -> TAggregate:
        """
        Return the latest saved version.

        Raises:
            AggregateNotFoundError: If the aggregate was never saved
        """
        aggregate = await self.find_by_id(aggregate_id)
        if aggregate is None:
            raise AggregateNotFoundError(self._aggregate_type.aggregate_type, aggregate_id)
        return aggregate

    async def find_first(self, predicate: Callable[[TAggregate], bool]) -> TAggregate | None:
        async with self._lock:
            for aggregate in self._latest.values():
                if predicate(aggregate):
                    return aggregate
            return None

    async def find_all(self) -> list[TAggregate]:
        async with self._lock:
            return list(self._latest.values())

    def history(self, aggregate_id: str) -> list[TAggregate]:
        """Every saved version of an aggregate, oldest first."""
        return list(self._history.get(aggregate_id, []))

    def clear(self) -> None:
        self._latest.clear()
        self._history.clear()

    def __len__(self) -> int:
        return len(self._latest)


__all__ = ["InMemoryRepository", "Repository", "TAggregate"]
