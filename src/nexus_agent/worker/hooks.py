"""SAQ lifecycle hooks shared by every queue's worker."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from saq.job import Status

from nexus_agent.events import EventType
from nexus_agent.logging_config import setup_logging
from nexus_agent.queues import QueueName
from nexus_agent.runtime import Runtime, build_runtime

if TYPE_CHECKING:
    from saq.types import Context

logger = logging.getLogger(__name__)


def runtime_from(ctx: Context) -> Runtime:
    runtime = ctx.get("runtime")
    if runtime is None:
        msg = "Worker runtime not initialised; is the startup hook configured?"
        raise RuntimeError(msg)
    return runtime  # type: ignore[return-value]


async def startup(ctx: Context) -> None:
    """Build the shared runtime into the worker context."""
    queue_name = ctx["worker"].queue.name
    setup_logging(f"worker-{queue_name}")
    ctx["runtime"] = await build_runtime()  # type: ignore[typeddict-unknown-key]
    logger.info("Worker for %s started", queue_name)


async def shutdown(ctx: Context) -> None:
    runtime = ctx.get("runtime")
    if runtime is not None:
        await runtime.close()  # type: ignore[attr-defined]
    logger.info("Worker shut down")


async def after_process(ctx: Context) -> None:
    """Publish the job outcome and a fresh stats snapshot for its queue."""
    job = ctx.get("job")
    runtime = ctx.get("runtime")
    if job is None or runtime is None:
        return

    queue_name = job.queue.name
    bus = runtime.bus  # type: ignore[attr-defined]
    if job.status == Status.COMPLETE:
        bus.emit(EventType.QUEUE_JOB_COMPLETED, queue=queue_name, job_id=job.key)
    elif job.status in (Status.FAILED, Status.ABORTED):
        bus.emit(EventType.QUEUE_JOB_FAILED, queue=queue_name, job_id=job.key, reason=job.error)
    else:
        logger.info("Job %s on %s will be retried (attempt %d)", job.key, queue_name, job.attempts)

    try:
        stats = await runtime.queues.stats(QueueName(queue_name))  # type: ignore[attr-defined]
    except Exception:
        logger.warning("Failed to collect stats for %s", queue_name, exc_info=True)
        return
    bus.emit(EventType.QUEUE_STATS, **stats.model_dump())


async def embedding_startup(ctx: Context) -> None:
    """Startup for the embeddings worker: also make sure the collection exists."""
    await startup(ctx)
    index = runtime_from(ctx).index
    if index is None:
        logger.warning("OPENAI_API_KEY not set; embedding jobs will fail until it is")
        return
    await index.ensure_collection()
