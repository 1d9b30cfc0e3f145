"""Named delay queues on top of SAQ.

Each logical queue is its own SAQ ``Queue`` (and is consumed by its own
worker process), so concurrency and retry policy are configured per queue.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any

from saq import Queue
from saq.job import Job, Status

from nexus_agent.config import Config
from nexus_agent.events import EventBus, EventType, QueueStatsPayload

logger = logging.getLogger(__name__)


class QueueName(str, Enum):
    AGENT_WAKES = "agent-wakes"
    EVENTS_SYSTEM = "events-system"
    DISCORD_ASKS = "discord-asks"
    EMBEDDINGS = "embeddings"


# Job function names, one per queue
WAKE_JOB = "process_wake"
SYSTEM_EVENT_JOB = "process_system_event"
DISCORD_ASK_JOB = "process_discord_ask"
EMBEDDING_JOB = "process_embedding"


@dataclass(frozen=True)
class QueuePolicy:
    """Worker concurrency and per-job retry settings for a queue."""

    concurrency: int
    timeout: int
    retries: int
    retry_delay: float


QUEUE_POLICIES: dict[QueueName, QueuePolicy] = {
    # Wakes run a full exchange; one at a time
    QueueName.AGENT_WAKES: QueuePolicy(
        concurrency=Config.WAKE_CONCURRENCY.value,
        timeout=int(Config.EXCHANGE_TIMEOUT_SECONDS.value) + 60,
        retries=Config.JOB_RETRIES.value,
        retry_delay=Config.JOB_RETRY_DELAY_SECONDS.value,
    ),
    QueueName.EVENTS_SYSTEM: QueuePolicy(
        concurrency=Config.SYSTEM_EVENT_CONCURRENCY.value,
        timeout=60,
        retries=Config.JOB_RETRIES.value,
        retry_delay=Config.JOB_RETRY_DELAY_SECONDS.value,
    ),
    QueueName.DISCORD_ASKS: QueuePolicy(
        concurrency=Config.DISCORD_ASK_CONCURRENCY.value,
        timeout=int(Config.EXCHANGE_TIMEOUT_SECONDS.value) + 60,
        retries=Config.JOB_RETRIES.value,
        retry_delay=Config.JOB_RETRY_DELAY_SECONDS.value,
    ),
    QueueName.EMBEDDINGS: QueuePolicy(
        concurrency=Config.EMBEDDING_CONCURRENCY.value,
        timeout=60,
        retries=Config.JOB_RETRIES.value,
        retry_delay=Config.JOB_RETRY_DELAY_SECONDS.value,
    ),
}

_FINISHED = (Status.COMPLETE, Status.FAILED, Status.ABORTED, Status.ABORTING)


class QueueManager:
    """Enqueue, cancel and inspect jobs across the named queues."""

    def __init__(
        self,
        queues: dict[QueueName, Queue],
        bus: EventBus | None = None,
    ) -> None:
        self._queues = queues
        self._bus = bus

    @classmethod
    def from_url(cls, redis_url: str, bus: EventBus | None = None) -> QueueManager:
        queues = {name: Queue.from_url(redis_url, name=name.value) for name in QueueName}
        logger.info("Created queues %s (redis_url=%s)", [q.value for q in queues], redis_url)
        return cls(queues, bus)

    def queue(self, name: QueueName) -> Queue:
        return self._queues[name]

    async def connect(self) -> None:
        for queue in self._queues.values():
            await queue.connect()

    async def close(self) -> None:
        for queue in self._queues.values():
            await queue.disconnect()
        logger.info("Queue connections closed")

    async def enqueue(
        self,
        name: QueueName,
        function: str,
        *,
        delay_seconds: float = 0,
        **job_kwargs: Any,
    ) -> str:
        """Add a job, optionally delayed.

        Args:
            name: Target queue.
            function: Registered job function name.
            delay_seconds: Seconds before the job becomes eligible; 0 runs it
                as soon as a worker slot is free.
            **job_kwargs: Keyword arguments passed to the job function.

        Returns:
            The job key, usable with remove().
        """
        policy = QUEUE_POLICIES[name]
        job = Job(
            function=function,
            kwargs=job_kwargs,
            timeout=policy.timeout,
            retries=policy.retries,
            retry_delay=policy.retry_delay,
            retry_backoff=True,
            scheduled=int(time.time() + delay_seconds) if delay_seconds > 0 else 0,
        )
        enqueued = await self._queues[name].enqueue(job)
        if enqueued is None:
            msg = f"Job {job.key} was not enqueued on {name.value}"
            raise RuntimeError(msg)

        logger.info(
            "Enqueued %s on %s (key=%s, delay=%ss)",
            function,
            name.value,
            enqueued.key,
            delay_seconds,
        )
        if self._bus is not None:
            self._bus.emit(
                EventType.QUEUE_JOB_ADDED,
                queue=name.value,
                job_id=enqueued.key,
                name=function,
                delay=delay_seconds or None,
            )
        return enqueued.key

    async def remove(self, name: QueueName, job_key: str) -> bool:
        """Abort a pending job.

        Returns:
            True if the job was pending and has been aborted, False if it no
            longer exists or has already finished.
        """
        queue = self._queues[name]
        job = await queue.job(job_key)
        if job is None or job.status in _FINISHED:
            logger.debug("Job %s on %s already gone, nothing to remove", job_key, name.value)
            return False

        await queue.abort(job, error="cancelled")
        logger.info("Removed job %s from %s", job_key, name.value)
        return True

    async def stats(self, name: QueueName) -> QueueStatsPayload:
        queue = self._queues[name]
        queued = await queue.count("queued")
        active = await queue.count("active")
        incomplete = await queue.count("incomplete")
        return QueueStatsPayload(
            queue=name.value,
            queued=queued,
            active=active,
            scheduled=max(incomplete - queued - active, 0),
        )

    async def emit_stats(self) -> list[QueueStatsPayload]:
        """Publish a stats snapshot for every queue."""
        snapshots = [await self.stats(name) for name in QueueName]
        if self._bus is not None:
            for snapshot in snapshots:
                self._bus.emit(EventType.QUEUE_STATS, **snapshot.model_dump())
        return snapshots
