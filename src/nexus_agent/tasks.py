"""Tracked fire-and-forget tasks.

The event loop only keeps weak references to tasks, so background work
(title generation, alert investigations, event publishing) is held here
until it finishes.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Coroutine
from typing import Any

logger = logging.getLogger(__name__)

_background_tasks: set[asyncio.Task[Any]] = set()


def _on_done(task: asyncio.Task[Any]) -> None:
    _background_tasks.discard(task)
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.error(
            "Background task %s failed", task.get_name(), exc_info=exc
        )


def spawn(coro: Coroutine[Any, Any, Any], *, name: str | None = None) -> asyncio.Task[Any]:
    """Schedule a coroutine in the background and keep it alive until done."""
    task = asyncio.get_running_loop().create_task(coro, name=name)
    _background_tasks.add(task)
    task.add_done_callback(_on_done)
    return task


async def drain(timeout: float | None = None) -> None:
    """Wait for outstanding background tasks (used on shutdown and in tests)."""
    while _background_tasks:
        pending = list(_background_tasks)
        _, still_pending = await asyncio.wait(pending, timeout=timeout)
        if still_pending and timeout is not None:
            logger.warning("%d background tasks still running after drain", len(still_pending))
            return
