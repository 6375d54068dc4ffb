# app/infra/background.py
"""
Detached background tasks.

Work scheduled here is decoupled from the request that spawned it: the
caller never awaits it and never sees its exceptions.  Failures are
logged and counted.  The runner holds strong references so the event
loop cannot garbage-collect a task mid-flight.

Shutdown / tests
~~~~~~~~~~~~~~~~
``await runner.drain()`` waits for everything currently scheduled
(optionally bounded by a timeout). Call it during application shutdown,
or in tests to assert detached work actually ran.
"""
from __future__ import annotations

import asyncio
from typing import Any, Coroutine

from app.infra.logging_config import get_logger
from app.infra.metrics import ConfirmationMetrics

logger = get_logger(__name__)


class DetachedTaskRunner:
    """Fire-and-forget task scheduler with failure capture."""

    def __init__(self) -> None:
        self._tasks: set[asyncio.Task] = set()
        self._spawned = 0
        self._failed = 0

    @property
    def pending(self) -> int:
        return len(self._tasks)

    @property
    def spawned(self) -> int:
        return self._spawned

    @property
    def failed(self) -> int:
        return self._failed

    def spawn(self, coro: Coroutine[Any, Any, Any], *, name: str) -> asyncio.Task:
        """Schedule *coro* on the running loop and return immediately."""
        task = asyncio.create_task(coro, name=name)
        self._tasks.add(task)
        self._spawned += 1
        task.add_done_callback(self._on_task_done)
        return task

    def _on_task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            logger.debug("Detached task cancelled: %s", task.get_name())
            return
        exc = task.exception()
        if exc is not None:
            self._failed += 1
            ConfirmationMetrics.detached_task_failed(task.get_name().split("-", 1)[0])
            logger.error(
                "Detached task failed: %s: %s", task.get_name(), exc,
                exc_info=(type(exc), exc, exc.__traceback__),
            )

    async def drain(self, timeout: float | None = None) -> int:
        """
        Wait for scheduled tasks to finish.

        Returns the number of tasks still pending (and now cancelled)
        when the timeout ran out; 0 when everything completed.
        """
        if not self._tasks:
            return 0

        pending_tasks = list(self._tasks)
        done, pending = await asyncio.wait(pending_tasks, timeout=timeout)
        for task in pending:
            task.cancel()
        if pending:
            logger.warning("Detached tasks abandoned on drain: %d", len(pending))
            await asyncio.gather(*pending, return_exceptions=True)
        return len(pending)
