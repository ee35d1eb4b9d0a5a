"""Detached asyncio tasks whose outcome is always observed."""

from __future__ import annotations

import asyncio
from functools import partial
from typing import Any, Coroutine, Optional, Set

import structlog

logger = structlog.get_logger(__name__)


class BackgroundTaskRunner:
    """Spawns fire-and-forget tasks and logs how each one ends.

    Tasks are held in ``_in_flight`` until they finish so the event loop
    does not garbage-collect them, and so shutdown can wait for them.
    """

    def __init__(self):
        self._in_flight: Set[asyncio.Task] = set()

    @property
    def in_flight_count(self) -> int:
        return len(self._in_flight)

    def spawn(self, coro: Coroutine[Any, Any, Any], name: str, **log_context: Any) -> Optional[asyncio.Task]:
        """Schedule ``coro`` without awaiting it.

        Launch errors are logged and ``None`` is returned; they are never
        raised to the caller.
        """
        try:
            task = asyncio.get_running_loop().create_task(coro, name=name)
        except Exception as e:
            coro.close()
            logger.error("Failed to launch background task", task=name, error=str(e), **log_context)
            return None

        self._in_flight.add(task)
        task.add_done_callback(partial(self._on_done, name, log_context))
        logger.info("Background task launched", task=name, in_flight=len(self._in_flight), **log_context)
        return task

    def _on_done(self, name: str, log_context: dict, task: asyncio.Task) -> None:
        self._in_flight.discard(task)

        if task.cancelled():
            logger.warning("Background task cancelled", task=name, **log_context)
            return

        error = task.exception()
        if error is not None:
            logger.error(
                "Background task failed",
                task=name,
                error=str(error),
                error_type=type(error).__name__,
                exc_info=error,
                **log_context,
            )
            return

        logger.info("Background task completed", task=name, **log_context)

    async def drain(self, timeout: float = 30.0) -> None:
        """Wait for in-flight tasks to finish, up to ``timeout`` seconds."""
        if not self._in_flight:
            return
        logger.info("Waiting for in-flight background tasks", count=len(self._in_flight), timeout=timeout)
        _, pending = await asyncio.wait(set(self._in_flight), timeout=timeout)
        if pending:
            logger.warning("Background tasks still running after timeout", count=len(pending))
