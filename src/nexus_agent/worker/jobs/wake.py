"""Wake job: resume a sleeping thread when its delay elapses."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from nexus_agent.errors import ThreadNotFound
from nexus_agent.worker.hooks import runtime_from
from nexus_agent.worker.tracing import traced_job

if TYPE_CHECKING:
    from saq.types import Context

logger = logging.getLogger(__name__)


@traced_job
async def process_wake(ctx: Context, *, thread_id: str, reason: str) -> dict[str, object]:
    """Run the wake exchange for a thread.

    A failing exchange marks the thread failed (so it does not stay asleep
    forever) and is re-raised for SAQ's retry handling.

    Args:
        ctx: SAQ job context.
        thread_id: Thread to wake.
        reason: Reason recorded when the wake was scheduled.

    Returns:
        Status dict.
    """
    runtime = runtime_from(ctx)
    job = ctx.get("job")
    job_id = job.key if job is not None else None

    try:
        result = await runtime.service.wake_thread(thread_id, reason, job_id=job_id)
    except ThreadNotFound:
        logger.warning("Wake for unknown thread %s, dropping", thread_id)
        return {"status": "skipped", "reason": "thread_not_found"}
    except Exception:
        logger.exception("Wake of thread %s failed", thread_id)
        try:
            await runtime.store.mark_failed(thread_id)
        except Exception:
            logger.exception("Failed to mark thread %s as failed", thread_id)
        raise

    logger.info(
        "Wake of thread %s done (status=%s, %d chars)",
        thread_id,
        result.thread.status.value,
        len(result.response),
    )
    return {
        "status": "ok",
        "thread_id": thread_id,
        "thread_status": result.thread.status.value,
        "response_length": len(result.response),
    }
