"""Per-job trace logging for SAQ job functions."""

from __future__ import annotations

import asyncio
import functools
import logging
import time
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, Any, TypeVar

if TYPE_CHECKING:
    from saq.types import Context

logger = logging.getLogger(__name__)

F = TypeVar("F", bound=Callable[..., Awaitable[Any]])


def _span_fields(ctx: Context) -> dict[str, Any]:
    job = ctx.get("job")
    if job is None:
        return {"queue": "?", "key": "?", "attempt": 0, "delay": 0.0}
    delay = 0.0
    if job.scheduled and job.queued:
        delay = max(job.scheduled - job.queued / 1000, 0.0)
    return {
        "queue": job.queue.name if job.queue else "?",
        "key": job.key,
        "attempt": job.attempts,
        "delay": delay,
    }


def traced_job(func: F) -> F:
    """Log a span around a job: queue, key, attempt, scheduled delay, duration, outcome.

    The wrapper keeps the function's name, which SAQ uses to register it.
    """

    @functools.wraps(func)
    async def wrapper(ctx: Context, **kwargs: Any) -> Any:
        span = _span_fields(ctx)
        name = func.__name__
        logger.info(
            "[job] %s started (queue=%s, key=%s, attempt=%s, delay=%.1fs)",
            name,
            span["queue"],
            span["key"],
            span["attempt"],
            span["delay"],
        )
        started = time.monotonic()
        try:
            result = await func(ctx, **kwargs)
        except asyncio.CancelledError:
            logger.warning(
                "[job] %s cancelled (key=%s, after %.2fs)", name, span["key"], time.monotonic() - started
            )
            raise
        except Exception:
            logger.exception(
                "[job] %s failed (key=%s, attempt=%s, after %.2fs)",
                name,
                span["key"],
                span["attempt"],
                time.monotonic() - started,
            )
            raise
        logger.info(
            "[job] %s succeeded (key=%s, %.2fs)", name, span["key"], time.monotonic() - started
        )
        return result

    return wrapper  # type: ignore[return-value]
