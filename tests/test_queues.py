"""Tests for QueueManager over SAQ queues."""

from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest
from saq.job import Status

from nexus_agent.events import EventBus, EventType
from nexus_agent.queues import QUEUE_POLICIES, WAKE_JOB, QueueManager, QueueName
from tests.conftest import EventRecorder


def make_queue() -> MagicMock:
    queue = MagicMock()
    queue.enqueue = AsyncMock(side_effect=lambda job: job)
    queue.job = AsyncMock(return_value=None)
    queue.abort = AsyncMock()
    queue.count = AsyncMock(side_effect=lambda kind: {"queued": 2, "active": 1, "incomplete": 5}[kind])
    return queue


@pytest.fixture
def saq_queues() -> dict[QueueName, MagicMock]:
    return {name: make_queue() for name in QueueName}


class TestEnqueue:
    @pytest.mark.asyncio
    async def test_builds_job_with_queue_policy(self, saq_queues: dict) -> None:
        bus = EventBus()
        recorder = EventRecorder(bus)
        manager = QueueManager(saq_queues, bus)

        key = await manager.enqueue(
            QueueName.AGENT_WAKES, WAKE_JOB, delay_seconds=60, thread_id="t1", reason="check"
        )

        (job,) = saq_queues[QueueName.AGENT_WAKES].enqueue.await_args.args
        policy = QUEUE_POLICIES[QueueName.AGENT_WAKES]
        assert job.key == key
        assert job.function == WAKE_JOB
        assert job.kwargs == {"thread_id": "t1", "reason": "check"}
        assert job.retries == policy.retries
        assert job.timeout == policy.timeout
        assert job.scheduled > 0
        (added,) = recorder.of(EventType.QUEUE_JOB_ADDED)
        assert (added.queue, added.job_id, added.delay) == ("agent-wakes", key, 60)

    @pytest.mark.asyncio
    async def test_immediate_job_is_not_scheduled(self, saq_queues: dict) -> None:
        manager = QueueManager(saq_queues)

        await manager.enqueue(QueueName.EMBEDDINGS, "process_embedding", thread_id="t1")

        (job,) = saq_queues[QueueName.EMBEDDINGS].enqueue.await_args.args
        assert job.scheduled == 0

    @pytest.mark.asyncio
    async def test_rejected_enqueue_raises(self, saq_queues: dict) -> None:
        saq_queues[QueueName.EMBEDDINGS].enqueue = AsyncMock(return_value=None)
        manager = QueueManager(saq_queues)

        with pytest.raises(RuntimeError, match="was not enqueued"):
            await manager.enqueue(QueueName.EMBEDDINGS, "process_embedding")


class TestRemove:
    @pytest.mark.asyncio
    async def test_aborts_pending_job(self, saq_queues: dict) -> None:
        queue = saq_queues[QueueName.AGENT_WAKES]
        job = SimpleNamespace(status=Status.QUEUED)
        queue.job.return_value = job

        assert await QueueManager(saq_queues).remove(QueueName.AGENT_WAKES, "job-1") is True
        queue.abort.assert_awaited_once_with(job, error="cancelled")

    @pytest.mark.asyncio
    async def test_missing_job(self, saq_queues: dict) -> None:
        assert await QueueManager(saq_queues).remove(QueueName.AGENT_WAKES, "gone") is False

    @pytest.mark.asyncio
    async def test_finished_job_is_left_alone(self, saq_queues: dict) -> None:
        queue = saq_queues[QueueName.AGENT_WAKES]
        queue.job.return_value = SimpleNamespace(status=Status.COMPLETE)

        assert await QueueManager(saq_queues).remove(QueueName.AGENT_WAKES, "done") is False
        queue.abort.assert_not_awaited()


class TestStats:
    @pytest.mark.asyncio
    async def test_scheduled_is_incomplete_minus_queued_and_active(self, saq_queues: dict) -> None:
        stats = await QueueManager(saq_queues).stats(QueueName.EVENTS_SYSTEM)
        assert (stats.queue, stats.queued, stats.active, stats.scheduled) == ("events-system", 2, 1, 2)

    @pytest.mark.asyncio
    async def test_emit_stats_publishes_every_queue(self, saq_queues: dict) -> None:
        bus = EventBus()
        recorder = EventRecorder(bus)

        await QueueManager(saq_queues, bus).emit_stats()

        assert [s.queue for s in recorder.of(EventType.QUEUE_STATS)] == [n.value for n in QueueName]
