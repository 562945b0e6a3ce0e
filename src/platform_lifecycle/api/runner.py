"""Background execution of lifecycle operations.

Operations run as tasks detached from the request that started them, so a
client disconnect stops the stream but never the build.
"""

from __future__ import annotations

import asyncio
from collections.abc import Coroutine
from typing import Any

import structlog

logger = structlog.get_logger()


class BackgroundOperations:
    """Tracks in-flight operation tasks until they complete."""

    def __init__(self) -> None:
        self._tasks: set[asyncio.Task[Any]] = set()

    def __len__(self) -> int:
        return len(self._tasks)

    def spawn(self, coro: Coroutine[Any, Any, Any], *, name: str | None = None) -> asyncio.Task[Any]:
        task = asyncio.create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def drain(self, timeout: float | None = None) -> None:
        """Wait for running operations, e.g. on shutdown."""
        if not self._tasks:
            return
        pending = list(self._tasks)
        logger.info("operations.draining", count=len(pending))
        _done, still_running = await asyncio.wait(pending, timeout=timeout)
        if still_running:
            logger.warning("operations.drain_timeout", remaining=len(still_running))
