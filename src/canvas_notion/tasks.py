"""In-process runner for background sync runs."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Hashable

logger = logging.getLogger(__name__)


class TaskAlreadyRunningError(RuntimeError):
    """Raised when a task is submitted for a key that still has one in flight."""

    def __init__(self, key: Hashable) -> None:
        self.key = key
        super().__init__(f"A task for {key!r} is already running")


class SyncTaskRunner:
    """Schedules one asyncio task per run and tracks which keys are active.

    A key (normally ``(user_id, page_id)``) can only have one task in flight.
    The registry lives in this process only.
    """

    def __init__(self) -> None:
        self._active: dict[Hashable, asyncio.Task] = {}

    def is_running(self, key: Hashable) -> bool:
        task = self._active.get(key)
        return task is not None and not task.done()

    def submit(
        self,
        key: Hashable,
        coro_factory: Callable[[], Awaitable[Any]],
    ) -> asyncio.Task:
        if self.is_running(key):
            raise TaskAlreadyRunningError(key)

        task = asyncio.ensure_future(coro_factory())
        self._active[key] = task
        task.add_done_callback(lambda t: self._on_done(key, t))
        logger.info("Scheduled background sync %s", key)
        return task

    def _on_done(self, key: Hashable, task: asyncio.Task) -> None:
        if self._active.get(key) is task:
            del self._active[key]
        if task.cancelled():
            logger.warning("Background sync %s was cancelled", key)
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Background sync %s failed: %s", key, exc, exc_info=exc)

    async def wait_all(self) -> None:
        """Wait for every task currently in flight."""
        tasks = list(self._active.values())
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
