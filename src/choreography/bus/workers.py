"""Consumer task bookkeeping shared by the broker implementations."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Coroutine, Iterator
from typing import Any

logger = logging.getLogger(__name__)


class ConsumerTasks:
    """
    Tracks consumer tasks and which of them are inside a handler.

    ``stop()`` cancels idle consumers straight away (they are only waiting for
    the next message) and waits for busy ones to finish their current handler.
    """

    def __init__(self, name: str) -> None:
        self._name = name
        self._tasks: set[asyncio.Task[None]] = set()
        self._busy: set[asyncio.Task[Any]] = set()

    def spawn(self, coro: Coroutine[Any, Any, None], name: str) -> asyncio.Task[None]:
        task = asyncio.create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    @contextlib.contextmanager
    def busy(self) -> Iterator[None]:
        """Mark the current task as handling a message."""
        task = asyncio.current_task()
        if task is not None:
            self._busy.add(task)
        try:
            yield
        finally:
            if task is not None:
                self._busy.discard(task)

    @property
    def in_flight(self) -> int:
        return len(self._busy)

    def __len__(self) -> int:
        return len(self._tasks)

    async def stop(self, timeout: float) -> None:
        """
        Stop all consumer tasks.

        Args:
            timeout: Seconds to wait for busy consumers before cancelling them
        """
        tasks = set(self._tasks)
        if not tasks:
            return

        for task in tasks - self._busy:
            task.cancel()

        _, pending = await asyncio.wait(tasks, timeout=timeout)
        if pending:
            logger.warning(
                "Consumers did not finish in time, cancelling",
                extra={"broker": self._name, "pending": len(pending), "timeout": timeout},
            )
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)

        # Surface unexpected consumer crashes in the log
        for task in tasks:
            if task.cancelled():
                continue
            error = task.exception()
            if error is not None:
                logger.error(
                    "Consumer task failed",
                    extra={"broker": self._name, "task": task.get_name(), "error": str(error)},
                    exc_info=error,
                )


__all__ = ["ConsumerTasks"]
