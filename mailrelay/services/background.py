"""
Detached background work.

Tasks spawned here are never awaited by the request that started them.
Their outcome only reaches the logs.
"""

import asyncio
from collections.abc import Coroutine
from typing import Any

from mailrelay.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


class BackgroundTaskRunner:
    """Fire-and-forget task spawner with log-only failure handling."""

    def __init__(self):
        # asyncio keeps only weak references to tasks
        self._tasks: set[asyncio.Task] = set()

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def spawn(self, coro: Coroutine[Any, Any, Any], name: str) -> asyncio.Task:
        """Schedule `coro` on the running loop and return immediately."""
        task = asyncio.create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._on_done)
        return task

    def _on_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)

        if task.cancelled():
            logger.warning("Background task cancelled", task=task.get_name())
            return

        error = task.exception()
        if error is not None:
            logger.error(
                "Background task failed",
                task=task.get_name(),
                error=str(error),
                error_type=type(error).__name__,
            )
        else:
            logger.debug("Background task completed", task=task.get_name(), result=task.result())

    async def drain(self) -> None:
        """Wait for outstanding tasks; used at shutdown and in tests."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
