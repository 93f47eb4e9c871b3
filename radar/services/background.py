"""
Detached background work.

Fire-and-forget steps (history enrichment) run as asyncio tasks outside the
request's error and latency contract. The registry keeps a strong reference
to every running task so it is not garbage-collected mid-flight, logs any
failure that escapes, and lets shutdown (and tests) wait for completion.
"""

import asyncio
import logging
from typing import Awaitable

logger = logging.getLogger(__name__)


class DetachedTasks:
    """Set of in-flight background tasks with a shared error boundary."""

    def __init__(self):
        self._tasks: set[asyncio.Task] = set()
        self._failed: int = 0

    def spawn(self, coro: Awaitable, name: str | None = None) -> asyncio.Task:
        """Schedule ``coro`` without awaiting it."""
        task = asyncio.ensure_future(coro)
        if name:
            task.set_name(name)
        self._tasks.add(task)
        task.add_done_callback(self._on_done)
        return task

    def _on_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            self._failed += 1
            logger.error("Background task %s failed: %s", task.get_name(), exc)

    @property
    def pending(self) -> int:
        """Number of tasks still running."""
        return len(self._tasks)

    @property
    def failed(self) -> int:
        return self._failed

    async def drain(self) -> None:
        """Wait for all in-flight tasks, including ones spawned while waiting."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)


# Process-wide registry; drained in the app lifespan on shutdown
background_tasks = DetachedTasks()
