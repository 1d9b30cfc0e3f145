"""Tests for AgentService exchanges, wakes and chat streams."""

import asyncio
import json
from collections.abc import AsyncIterator

import pytest
from pydantic import BaseModel

from nexus_agent.agent.chunks import (
    ContentDelta,
    MessageEnd,
    RunError,
    RunFinished,
    ToolCallArgsDelta,
    ToolCallEnd,
    ToolCallStart,
)
from nexus_agent.agent.service import AgentService
from nexus_agent.agent.tools import Tool, ToolRegistry
from nexus_agent.agent.wake import WakeScheduler
from nexus_agent.errors import ThreadNotFound
from nexus_agent.events import EventType
from nexus_agent.queues import EMBEDDING_JOB, QueueName
from nexus_agent.tasks import drain
from nexus_agent.threads import (
    InMemoryThreadStore,
    MessageRole,
    ThreadSource,
    ThreadStatus,
    ToolCall,
)
from tests.conftest import EventRecorder, FakeQueues, ScriptedModel, reply


def calling(name: str, args: dict, *, text: str = "", call_id: str = "t1"):
    """Script that calls one tool through the registry, then answers."""

    async def script(tools: ToolRegistry) -> AsyncIterator:
        if text:
            yield ContentDelta(message_id="m1", delta=text)
        yield ToolCallStart(tool_call_id=call_id, tool_name=name)
        yield ToolCallArgsDelta(tool_call_id=call_id, delta=json.dumps(args))
        try:
            result = await tools.dispatch(name, args)
        except Exception as exc:
            yield ToolCallEnd(tool_call_id=call_id, result={"error": str(exc)}, is_error=True)
        else:
            yield ToolCallEnd(tool_call_id=call_id, result=result)
        yield MessageEnd(message_id="m1")
        yield RunFinished(finish_reason="end_turn")

    return script


class TestThreads:
    @pytest.mark.asyncio
    async def test_get_or_create_reuses_open_thread(self, service: AgentService) -> None:
        first = await service.get_or_create_thread(ThreadSource.DISCORD, "chan-1")
        second = await service.get_or_create_thread(ThreadSource.DISCORD, "chan-1")
        assert first.id == second.id

    @pytest.mark.asyncio
    async def test_get_or_create_skips_terminal_thread(
        self, service: AgentService, store: InMemoryThreadStore
    ) -> None:
        first = await service.get_or_create_thread(ThreadSource.DISCORD, "chan-1")
        await store.update(first.id, status=ThreadStatus.COMPLETE)

        second = await service.get_or_create_thread(ThreadSource.DISCORD, "chan-1")
        assert second.id != first.id

    @pytest.mark.asyncio
    async def test_get_or_create_finds_open_thread_behind_touched_terminal_one(
        self, service: AgentService, store: InMemoryThreadStore
    ) -> None:
        old = await service.get_or_create_thread(ThreadSource.DISCORD, "chan-1")
        await store.update(old.id, status=ThreadStatus.COMPLETE)
        current = await service.get_or_create_thread(ThreadSource.DISCORD, "chan-1")
        await asyncio.sleep(0.001)
        await store.update(old.id, title="Renamed later")

        again = await service.get_or_create_thread(ThreadSource.DISCORD, "chan-1")
        assert again.id == current.id

    @pytest.mark.asyncio
    async def test_list_threads_filters(self, service: AgentService) -> None:
        await service.create_thread(ThreadSource.CHAT)
        alert = await service.create_thread(ThreadSource.ALERT, "fp-1")

        listed = await service.list_threads(source=ThreadSource.ALERT)
        assert [t.id for t in listed] == [alert.id]


class TestSendMessage:
    @pytest.mark.asyncio
    async def test_persists_user_and_assistant_messages(
        self, service: AgentService, model: ScriptedModel
    ) -> None:
        model.scripts.append(reply("Disk is at 40%"))
        thread = await service.create_thread(ThreadSource.CHAT)

        result = await service.send_message(thread.id, "How full is the disk?")

        assert result.response == "Disk is at 40%"
        assert [(m.role, m.content) for m in result.thread.messages] == [
            (MessageRole.USER, "How full is the disk?"),
            (MessageRole.ASSISTANT, "Disk is at 40%"),
        ]
        assert result.thread.status == ThreadStatus.ACTIVE

    @pytest.mark.asyncio
    async def test_model_sees_history_and_context(
        self, service: AgentService, model: ScriptedModel, store: InMemoryThreadStore
    ) -> None:
        thread = await service.create_thread(ThreadSource.CHAT, context={"host": "db-1"})
        await service.send_message(thread.id, "first")
        await service.send_message(thread.id, "second")

        call = model.calls[-1]
        assert [m.content for m in call["messages"]] == ["first", "ok", "second"]
        assert '"host": "db-1"' in call["system"]

    @pytest.mark.asyncio
    async def test_unknown_thread(self, service: AgentService) -> None:
        with pytest.raises(ThreadNotFound):
            await service.send_message("missing", "hi")

    @pytest.mark.asyncio
    async def test_lock_released_after_unknown_thread(self, service: AgentService) -> None:
        with pytest.raises(ThreadNotFound):
            await service.send_message("missing", "hi")
        assert not service.locks.get("missing").locked()

    @pytest.mark.asyncio
    async def test_model_error_is_raised_and_user_message_kept(
        self, service: AgentService, model: ScriptedModel, store: InMemoryThreadStore
    ) -> None:
        model.scripts.append([RuntimeError("overloaded")])
        thread = await service.create_thread(ThreadSource.CHAT)

        with pytest.raises(RuntimeError, match="overloaded"):
            await service.send_message(thread.id, "hello?")

        stored = await store.get(thread.id)
        assert [m.content for m in stored.messages] == ["hello?"]
        assert not service.locks.get(thread.id).locked()

    @pytest.mark.asyncio
    async def test_new_message_cancels_pending_wake(
        self,
        service: AgentService,
        scheduler: WakeScheduler,
        queues: FakeQueues,
        store: InMemoryThreadStore,
    ) -> None:
        thread = await service.create_thread(ThreadSource.CHAT)
        wake = await scheduler.schedule_wake(thread.id, "1h", "check later")

        await service.send_message(thread.id, "actually, check now")

        assert wake.job_id in queues.removed
        stored = await store.get(thread.id)
        assert stored.wake_job_id is None
        assert stored.status == ThreadStatus.ACTIVE

    @pytest.mark.asyncio
    async def test_exchanges_on_one_thread_are_serialized(
        self, service: AgentService, model: ScriptedModel, store: InMemoryThreadStore
    ) -> None:
        model.scripts.extend([reply("one"), reply("two")])
        thread = await service.create_thread(ThreadSource.CHAT)

        await asyncio.gather(
            service.send_message(thread.id, "a"),
            service.send_message(thread.id, "b"),
        )

        stored = await store.get(thread.id)
        assert [m.content for m in stored.messages] == ["a", "one", "b", "two"]

    @pytest.mark.asyncio
    async def test_emits_user_message_and_thread_updated(
        self, service: AgentService, recorder: EventRecorder
    ) -> None:
        thread = await service.create_thread(ThreadSource.CHAT)
        await service.send_message(thread.id, "hello")

        user_events = [m for m in recorder.of(EventType.THREAD_MESSAGE) if m.role == "user"]
        assert [(m.content, m.done) for m in user_events] == [("hello", True)]
        assert recorder.of(EventType.THREAD_UPDATED)[0].id == thread.id


class TestMetaToolsInExchange:
    @pytest.mark.asyncio
    async def test_schedule_wake_leaves_thread_sleeping(
        self,
        service: AgentService,
        model: ScriptedModel,
        queues: FakeQueues,
        store: InMemoryThreadStore,
    ) -> None:
        model.scripts.append(calling("schedule_wake", {"delay": "10m", "reason": "recheck"}))
        thread = await service.create_thread(ThreadSource.CHAT)

        result = await service.send_message(thread.id, "watch the deploy")

        assert result.thread.status == ThreadStatus.SLEEPING
        assert result.thread.wake_reason == "recheck"
        (job,) = queues.pending(QueueName.AGENT_WAKES)
        assert result.thread.wake_job_id == job.key
        roles = [m.role for m in result.thread.messages]
        assert roles == [MessageRole.USER, MessageRole.ASSISTANT, MessageRole.TOOL]

    @pytest.mark.asyncio
    async def test_invalid_delay_is_reported_to_the_model(
        self, service: AgentService, model: ScriptedModel, queues: FakeQueues
    ) -> None:
        model.scripts.append(calling("schedule_wake", {"delay": "5x", "reason": "never"}))
        thread = await service.create_thread(ThreadSource.CHAT)

        result = await service.send_message(thread.id, "wait a bit")

        assert result.thread.status == ThreadStatus.ACTIVE
        assert queues.pending(QueueName.AGENT_WAKES) == []
        tool_message = result.thread.messages[-1]
        assert "Invalid delay format" in tool_message.content

    @pytest.mark.asyncio
    async def test_complete_task_is_terminal(
        self, service: AgentService, model: ScriptedModel
    ) -> None:
        model.scripts.append(calling("complete_task", {"summary": "Rolled back"}))
        thread = await service.create_thread(ThreadSource.CHAT)

        result = await service.send_message(thread.id, "roll back")

        assert result.thread.status == ThreadStatus.COMPLETE

    @pytest.mark.asyncio
    async def test_store_context_survives_the_exchange(
        self, service: AgentService, model: ScriptedModel
    ) -> None:
        model.scripts.append(calling("store_context", {"key": "baseline", "value": 42}))
        thread = await service.create_thread(ThreadSource.CHAT)

        result = await service.send_message(thread.id, "remember 42")

        assert result.thread.context == {"baseline": 42}


class PlayerCountInput(BaseModel):
    pass


class PlayerCountTool(Tool):
    name = "get_player_count"
    description = "Count players online on the game server."
    category = "games"
    input_model = PlayerCountInput

    async def execute(self, params: PlayerCountInput) -> dict:
        return {"online": True, "players": 3}


class TestToolResultsInExchange:
    @pytest.mark.asyncio
    async def test_tool_result_is_stored_with_its_call_id(
        self,
        store: InMemoryThreadStore,
        queues: FakeQueues,
        scheduler: WakeScheduler,
        model: ScriptedModel,
    ) -> None:
        service = AgentService(
            store,
            queues,  # type: ignore[arg-type]
            scheduler,
            model,
            tools=[PlayerCountTool()],
            timeout=5,
        )
        model.scripts.append(calling("get_player_count", {}, call_id="tc_1"))
        thread = await service.create_thread(ThreadSource.CHAT)

        result = await service.send_message(thread.id, "how many players?")
        await drain(timeout=5)

        user, assistant, tool = result.thread.messages
        assert user.content == "how many players?"
        assert assistant.tool_calls == [ToolCall(id="tc_1", name="get_player_count", arguments="{}")]
        assert tool.role == MessageRole.TOOL
        assert tool.tool_call_id == "tc_1"
        assert json.loads(tool.content) == {"online": True, "players": 3}
        assert (await store.get(thread.id)).messages == result.thread.messages


class TestWakeThread:
    @pytest.mark.asyncio
    async def test_wakes_sleeping_thread_with_reason(
        self,
        service: AgentService,
        scheduler: WakeScheduler,
        model: ScriptedModel,
    ) -> None:
        thread = await service.create_thread(ThreadSource.CHAT)
        wake = await scheduler.schedule_wake(thread.id, "1m", "check replicas")
        model.scripts.append(reply("Replicas are healthy"))

        result = await service.wake_thread(thread.id, "check replicas", job_id=wake.job_id)

        assert result.response == "Replicas are healthy"
        assert result.thread.status == ThreadStatus.ACTIVE
        assert result.thread.wake_job_id is None
        wake_input = result.thread.messages[0]
        assert wake_input.role == MessageRole.USER
        assert wake_input.content == "[SYSTEM WAKE] Scheduled wake: check replicas"

    @pytest.mark.asyncio
    async def test_skips_thread_that_is_not_sleeping(
        self, service: AgentService, model: ScriptedModel
    ) -> None:
        thread = await service.create_thread(ThreadSource.CHAT)

        result = await service.wake_thread(thread.id, "stale")

        assert result.response == ""
        assert model.calls == []
        assert not service.locks.get(thread.id).locked()

    @pytest.mark.asyncio
    async def test_skips_superseded_wake_job(
        self, service: AgentService, scheduler: WakeScheduler, model: ScriptedModel
    ) -> None:
        thread = await service.create_thread(ThreadSource.CHAT)
        first = await scheduler.schedule_wake(thread.id, "1h", "first")
        await scheduler.schedule_wake(thread.id, "2h", "second")

        result = await service.wake_thread(thread.id, "first", job_id=first.job_id)

        assert result.response == ""
        assert result.thread.status == ThreadStatus.SLEEPING
        assert model.calls == []

    @pytest.mark.asyncio
    async def test_unknown_thread(self, service: AgentService) -> None:
        with pytest.raises(ThreadNotFound):
            await service.wake_thread("missing", "x")
        assert not service.locks.get("missing").locked()


class TestOpenChat:
    @pytest.mark.asyncio
    async def test_creates_thread_and_streams(
        self, service: AgentService, model: ScriptedModel, store: InMemoryThreadStore
    ) -> None:
        model.scripts.append(reply("Hi there"))

        thread, chunks = await service.open_chat(None, "hello")
        forwarded = [chunk async for chunk in chunks]
        await drain(timeout=5)

        assert thread.source == ThreadSource.CHAT
        assert isinstance(forwarded[-1], RunFinished)
        stored = await store.get(thread.id)
        assert [m.content for m in stored.messages] == ["hello", "Hi there"]

    @pytest.mark.asyncio
    async def test_unknown_thread_fails_before_streaming(self, service: AgentService) -> None:
        with pytest.raises(ThreadNotFound):
            await service.open_chat("missing", "hello")

    @pytest.mark.asyncio
    async def test_model_error_ends_stream_with_run_error(
        self, service: AgentService, model: ScriptedModel
    ) -> None:
        model.scripts.append([ContentDelta(message_id="m1", delta="x"), RuntimeError("lost")])

        _, chunks = await service.open_chat(None, "hello")
        forwarded = [chunk async for chunk in chunks]

        assert isinstance(forwarded[-1], RunError)
        assert forwarded[-1].error == "lost"


class TestFollowUps:
    @pytest.mark.asyncio
    async def test_first_exchange_gets_a_title(
        self,
        service: AgentService,
        model: ScriptedModel,
        store: InMemoryThreadStore,
        recorder: EventRecorder,
    ) -> None:
        model.scripts.append(reply("Disk is fine"))
        thread = await service.create_thread(ThreadSource.CHAT)

        await service.send_message(thread.id, "check the disk")
        await drain(timeout=5)

        assert (await store.get(thread.id)).title == "Disk Usage Check"
        prompt = model.complete_calls[0]["prompt"]
        assert "User: check the disk" in prompt
        assert "Assistant: Disk is fine" in prompt
        assert recorder.of(EventType.THREAD_UPDATED)[-1].title == "Disk Usage Check"

    @pytest.mark.asyncio
    async def test_title_failure_leaves_thread_untitled(
        self, service: AgentService, model: ScriptedModel, store: InMemoryThreadStore
    ) -> None:
        model.title = RuntimeError("rate limited")
        thread = await service.create_thread(ThreadSource.CHAT)

        result = await service.send_message(thread.id, "check the disk")
        await drain(timeout=5)

        assert result.response == "ok"
        assert (await store.get(thread.id)).title is None

    @pytest.mark.asyncio
    async def test_later_exchanges_are_not_titled(
        self, service: AgentService, model: ScriptedModel
    ) -> None:
        thread = await service.create_thread(ThreadSource.CHAT)
        await service.send_message(thread.id, "first")
        await drain(timeout=5)
        await service.send_message(thread.id, "second")
        await drain(timeout=5)

        assert len(model.complete_calls) == 1

    @pytest.mark.asyncio
    async def test_messages_queued_for_embedding(
        self, service: AgentService, model: ScriptedModel, queues: FakeQueues
    ) -> None:
        model.scripts.append(reply("The disk is at forty percent"))
        thread = await service.create_thread(ThreadSource.CHAT)

        await service.send_message(thread.id, "How full is the disk?")

        jobs = queues.pending(QueueName.EMBEDDINGS)
        assert [job.function for job in jobs] == [EMBEDDING_JOB, EMBEDDING_JOB]
        assert [job.kwargs["role"] for job in jobs] == ["user", "assistant"]
        assert all(job.kwargs["thread_id"] == thread.id for job in jobs)

    @pytest.mark.asyncio
    async def test_short_messages_are_not_embedded(
        self, service: AgentService, queues: FakeQueues
    ) -> None:
        thread = await service.create_thread(ThreadSource.CHAT)
        await service.send_message(thread.id, "hi")
        assert queues.pending(QueueName.EMBEDDINGS) == []


class TestTools:
    @pytest.mark.asyncio
    async def test_describe_tools_without_index(self, service: AgentService) -> None:
        names = [info.name for info in service.describe_tools()]
        assert names == [
            "schedule_wake",
            "complete_task",
            "store_context",
            "get_context",
            "send_notification",
        ]

    @pytest.mark.asyncio
    async def test_grouped_tools(self, service: AgentService) -> None:
        groups = service.grouped_tools()
        assert list(groups) == ["meta"]
        assert len(groups["meta"]) == 5

    @pytest.mark.asyncio
    async def test_tools_for_binds_thread(self, service: AgentService) -> None:
        registry = service.tools_for("abc")
        assert "complete_task" in registry
        assert "search_history" not in registry
        assert all(tool.thread_id == "abc" for tool in registry)
