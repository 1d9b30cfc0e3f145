"""Shared fakes and fixtures."""

from __future__ import annotations

from collections.abc import AsyncIterator, Sequence
from dataclasses import dataclass, field
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio
from pydantic import BaseModel

from nexus_agent.agent.chunks import ContentDelta, MessageEnd, RunFinished, StreamChunk
from nexus_agent.agent.model import AgentModel
from nexus_agent.agent.service import AgentService
from nexus_agent.agent.tools import ToolRegistry
from nexus_agent.agent.wake import WakeScheduler
from nexus_agent.events import EventBus, EventType, QueueStatsPayload
from nexus_agent.queues import QueueName
from nexus_agent.tasks import drain
from nexus_agent.threads import InMemoryThreadStore, MessageRole, ThreadMessage, ToolCall


@dataclass
class FakeJob:
    key: str
    queue: QueueName
    function: str
    delay_seconds: float
    kwargs: dict[str, Any] = field(default_factory=dict)


class FakeQueues:
    """In-memory stand-in for QueueManager."""

    def __init__(self) -> None:
        self.jobs: dict[str, FakeJob] = {}
        self.enqueued: list[FakeJob] = []
        self.removed: list[str] = []
        self.fail_remove = False
        self._counter = 0

    async def enqueue(
        self, name: QueueName, function: str, *, delay_seconds: float = 0, **job_kwargs: Any
    ) -> str:
        self._counter += 1
        job = FakeJob(f"job-{self._counter}", name, function, delay_seconds, job_kwargs)
        self.jobs[job.key] = job
        self.enqueued.append(job)
        return job.key

    async def remove(self, name: QueueName, job_key: str) -> bool:
        if self.fail_remove:
            raise ConnectionError("redis unavailable")
        self.removed.append(job_key)
        return self.jobs.pop(job_key, None) is not None

    def pending(self, name: QueueName) -> list[FakeJob]:
        return [job for job in self.jobs.values() if job.queue == name]

    async def stats(self, name: QueueName) -> QueueStatsPayload:
        return QueueStatsPayload(queue=name.value, queued=len(self.pending(name)), active=0, scheduled=0)

    async def close(self) -> None:
        pass


def reply(text: str, message_id: str = "msg-1", finish_reason: str = "end_turn") -> list[StreamChunk]:
    """Chunks for a plain text answer."""
    return [
        ContentDelta(message_id=message_id, delta=text),
        MessageEnd(message_id=message_id),
        RunFinished(finish_reason=finish_reason),
    ]


def conversation(count: int) -> list[ThreadMessage]:
    """Repeating user, tool-calling assistant and tool result messages."""
    messages: list[ThreadMessage] = []
    for i in range(count):
        if i % 3 == 0:
            messages.append(ThreadMessage(role=MessageRole.USER, content=f"question {i}"))
        elif i % 3 == 1:
            call = ToolCall(id=f"call-{i}", name="get_player_count", arguments="{}")
            messages.append(
                ThreadMessage(role=MessageRole.ASSISTANT, content=f"checking {i}", tool_calls=[call])
            )
        else:
            messages.append(
                ThreadMessage(
                    role=MessageRole.TOOL,
                    content='{"online": true, "players": 3}',
                    tool_call_id=f"call-{i - 1}",
                )
            )
    return messages


class ScriptedModel(AgentModel):
    """Model that replays scripted chunk lists, one per run.

    A script is either a list of chunks (an exception instance in the list is
    raised at that point) or a callable taking the tool registry and
    returning an async iterator of chunks.
    """

    def __init__(self, *scripts: Any, title: str | BaseException = "Disk Usage Check") -> None:
        self.scripts = list(scripts)
        self.title = title
        self.calls: list[dict[str, Any]] = []
        self.complete_calls: list[dict[str, Any]] = []

    async def run(
        self,
        *,
        system: str,
        messages: Sequence[ThreadMessage],
        tools: ToolRegistry,
    ) -> AsyncIterator[StreamChunk]:
        self.calls.append({"system": system, "messages": list(messages), "tools": tools})
        script = self.scripts.pop(0) if self.scripts else reply("ok")
        if callable(script):
            async for chunk in script(tools):
                yield chunk
            return
        for item in script:
            if isinstance(item, BaseException):
                raise item
            yield item

    async def complete(self, *, prompt: str, max_tokens: int, system: str | None = None) -> str:
        self.complete_calls.append({"prompt": prompt, "max_tokens": max_tokens})
        if isinstance(self.title, BaseException):
            raise self.title
        return self.title


class EventRecorder:
    def __init__(self, bus: EventBus) -> None:
        self.events: list[tuple[EventType, BaseModel]] = []
        for event_type in EventType:
            bus.subscribe(event_type, self._record)

    def _record(self, event_type: EventType, payload: BaseModel) -> None:
        self.events.append((event_type, payload))

    def of(self, event_type: EventType) -> list[Any]:
        return [payload for kind, payload in self.events if kind == event_type]


@pytest.fixture
def store() -> InMemoryThreadStore:
    return InMemoryThreadStore()


@pytest.fixture
def queues() -> FakeQueues:
    return FakeQueues()


@pytest.fixture
def bus() -> EventBus:
    return EventBus()


@pytest.fixture
def recorder(bus: EventBus) -> EventRecorder:
    return EventRecorder(bus)


@pytest.fixture
def scheduler(store: InMemoryThreadStore, queues: FakeQueues) -> WakeScheduler:
    return WakeScheduler(store, queues)  # type: ignore[arg-type]


@pytest.fixture
def model() -> ScriptedModel:
    return ScriptedModel()


@pytest.fixture
def notifier() -> MagicMock:
    notifier = MagicMock()
    notifier.configured = True
    notifier.notify = AsyncMock(return_value=True)
    notifier.edit_interaction_reply = AsyncMock()
    return notifier


@pytest_asyncio.fixture
async def service(
    store: InMemoryThreadStore,
    queues: FakeQueues,
    scheduler: WakeScheduler,
    model: ScriptedModel,
    bus: EventBus,
    notifier: MagicMock,
) -> AsyncIterator[AgentService]:
    service = AgentService(
        store,
        queues,  # type: ignore[arg-type]
        scheduler,
        model,
        bus=bus,
        notifier=notifier,
        timeout=5,
    )
    yield service
    await drain(timeout=5)
