"""Wake scheduling for sleeping threads."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import datetime, timedelta

from nexus_agent.errors import InvalidDelay, WakeCancellationFailure
from nexus_agent.queues import WAKE_JOB, QueueManager, QueueName
from nexus_agent.threads.schemas import utcnow
from nexus_agent.threads.store import ThreadStore

logger = logging.getLogger(__name__)

_DELAY_PATTERN = re.compile(r"([0-9]+)([smhd])")
_UNIT_SECONDS = {"s": 1, "m": 60, "h": 3600, "d": 86400}


def parse_delay(expr: str) -> int:
    """Parse a delay like "30s", "5m", "2h" or "1d" into seconds.

    Raises:
        InvalidDelay: For anything that is not ``<int><unit>``.
    """
    match = _DELAY_PATTERN.fullmatch(expr) if isinstance(expr, str) else None
    if match is None:
        raise InvalidDelay(str(expr))
    amount, unit = match.groups()
    return int(amount) * _UNIT_SECONDS[unit]


@dataclass(frozen=True)
class ScheduledWake:
    job_id: str
    reason: str
    wake_at: datetime


class WakeScheduler:
    """Enqueues delayed wake jobs and keeps the thread's wake handle in sync.

    A thread has at most one pending wake: scheduling a new one cancels the
    previous job first.
    """

    def __init__(self, store: ThreadStore, queues: QueueManager) -> None:
        self._store = store
        self._queues = queues

    async def schedule_wake(self, thread_id: str, delay_expr: str, reason: str) -> ScheduledWake:
        """Schedule a wake for a thread.

        Args:
            thread_id: Thread to wake.
            delay_expr: Delay such as "10m".
            reason: Injected into the prompt when the thread wakes.

        Raises:
            InvalidDelay: If the delay is malformed. No job is enqueued.
            ThreadNotFound: If the thread does not exist.
        """
        delay_seconds = parse_delay(delay_expr)
        thread = await self._store.get(thread_id)

        if thread.wake_job_id:
            logger.info(
                "Thread %s already has wake %s pending, replacing it",
                thread_id,
                thread.wake_job_id,
            )
            await self.cancel_wake(thread_id)

        job_id = await self._queues.enqueue(
            QueueName.AGENT_WAKES,
            WAKE_JOB,
            delay_seconds=delay_seconds,
            thread_id=thread_id,
            reason=reason,
        )

        try:
            await self._store.set_wake(thread_id, job_id, reason)
        except Exception:
            logger.exception("Failed to record wake %s on thread %s, removing job", job_id, thread_id)
            await self._remove_job(thread_id, job_id)
            raise

        wake_at = utcnow() + timedelta(seconds=delay_seconds)
        logger.info(
            "Scheduled wake for thread %s in %s (job=%s, reason=%s)",
            thread_id,
            delay_expr,
            job_id,
            reason,
        )
        return ScheduledWake(job_id=job_id, reason=reason, wake_at=wake_at)

    async def cancel_wake(self, thread_id: str) -> bool:
        """Cancel a pending wake, if any.

        Removal from the queue is best effort: the job may already have fired.
        The thread's wake fields are cleared either way.

        Returns:
            True if a pending wake was cleared, False if there was none.
        """
        thread = await self._store.get(thread_id)
        if not thread.wake_job_id:
            return False

        await self._remove_job(thread_id, thread.wake_job_id)
        await self._store.clear_wake(thread_id)
        logger.info("Cancelled wake %s for thread %s", thread.wake_job_id, thread_id)
        return True

    async def _remove_job(self, thread_id: str, job_id: str) -> None:
        try:
            removed = await self._queues.remove(QueueName.AGENT_WAKES, job_id)
        except Exception as exc:
            failure = WakeCancellationFailure(
                f"Failed to cancel wake job {job_id} for thread {thread_id}: {exc}"
            )
            logger.warning("%s", failure, exc_info=exc)
            return
        if not removed:
            logger.info("Wake job %s for thread %s was no longer pending", job_id, thread_id)
