"""Thread-level agent operations: messages, wakes and chat streams."""

from __future__ import annotations

import asyncio
import logging
import weakref
from collections.abc import AsyncIterator, Sequence
from contextlib import aclosing
from dataclasses import dataclass
from functools import partial
from typing import Any

from nexus_agent.agent.accumulator import ExchangeState
from nexus_agent.agent.chunks import StreamChunk
from nexus_agent.agent.meta_tools import META_TOOL_TYPES, SearchHistoryTool, build_meta_tools
from nexus_agent.agent.model import AgentModel
from nexus_agent.agent.prompts import system_prompt_for, wake_message
from nexus_agent.agent.session import StreamingSession
from nexus_agent.agent.titles import generate_title
from nexus_agent.agent.tools import Tool, ToolInfo, ToolRegistry
from nexus_agent.agent.wake import WakeScheduler
from nexus_agent.config import Config
from nexus_agent.discord import DiscordNotifier
from nexus_agent.embeddings import EmbeddingIndex, should_index
from nexus_agent.events import EventBus, EventType
from nexus_agent.queues import EMBEDDING_JOB, QueueManager, QueueName
from nexus_agent.retry import retry_transient
from nexus_agent.tasks import spawn
from nexus_agent.threads import (
    MessageRole,
    Thread,
    ThreadMessage,
    ThreadSource,
    ThreadStatus,
    ThreadStore,
    settle_status,
)

logger = logging.getLogger(__name__)


class ThreadLocks:
    """One asyncio.Lock per thread id, dropped once nobody holds it."""

    def __init__(self) -> None:
        self._locks: weakref.WeakValueDictionary[str, asyncio.Lock] = weakref.WeakValueDictionary()

    def get(self, thread_id: str) -> asyncio.Lock:
        lock = self._locks.get(thread_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[thread_id] = lock
        return lock


@dataclass(frozen=True)
class ExchangeResult:
    thread: Thread
    response: str


class AgentService:
    """Runs exchanges on threads.

    Exchanges on the same thread are serialized by an in-process lock that
    is held until the exchange's cleanup (final write, follow-ups) is done.
    """

    def __init__(
        self,
        store: ThreadStore,
        queues: QueueManager,
        scheduler: WakeScheduler,
        model: AgentModel,
        *,
        bus: EventBus | None = None,
        notifier: DiscordNotifier | None = None,
        index: EmbeddingIndex | None = None,
        tools: Sequence[Tool] = (),
        timeout: float = Config.EXCHANGE_TIMEOUT_SECONDS.value,
    ) -> None:
        self.store = store
        self.queues = queues
        self.scheduler = scheduler
        self.model = model
        self.bus = bus
        self.notifier = notifier or DiscordNotifier()
        self.index = index
        self.tools = list(tools)
        self.timeout = timeout
        self.locks = ThreadLocks()

    # Threads

    async def create_thread(
        self,
        source: ThreadSource,
        source_id: str | None = None,
        *,
        context: dict[str, Any] | None = None,
    ) -> Thread:
        thread = await self.store.create(source, source_id, context=context)
        logger.info("Created thread %s (source=%s, source_id=%s)", thread.id, source.value, source_id)
        return thread

    async def get_thread(self, thread_id: str) -> Thread:
        return await self.store.get(thread_id)

    async def get_or_create_thread(self, source: ThreadSource, source_id: str) -> Thread:
        """Reuse the open thread for this origin, or start a new one."""
        existing = await self.store.find_open_by_source(source, source_id)
        if existing is not None:
            return existing
        return await self.create_thread(source, source_id)

    async def list_threads(
        self,
        *,
        status: ThreadStatus | None = None,
        source: ThreadSource | None = None,
        limit: int = 50,
    ) -> list[Thread]:
        return await self.store.list_threads(status=status, source=source, limit=limit)

    # Tools

    def tools_for(self, thread_id: str) -> ToolRegistry:
        """Shared tools plus meta tools bound to this thread."""
        meta = build_meta_tools(
            thread_id,
            store=self.store,
            scheduler=self.scheduler,
            notifier=self.notifier,
            index=self.index,
        )
        return ToolRegistry([*self.tools, *meta])

    def describe_tools(self) -> list[ToolInfo]:
        meta_types = [
            t for t in META_TOOL_TYPES if self.index is not None or t is not SearchHistoryTool
        ]
        return [tool.info() for tool in self.tools] + [t.info() for t in meta_types]

    def grouped_tools(self) -> dict[str, list[ToolInfo]]:
        groups: dict[str, list[ToolInfo]] = {}
        for info in self.describe_tools():
            groups.setdefault(info.category, []).append(info)
        return groups

    # Exchanges

    async def send_message(self, thread_id: str, content: str) -> ExchangeResult:
        """Add a user message and run the exchange to completion.

        A pending wake is cancelled first: new input supersedes it.

        Raises:
            ThreadNotFound: If the thread does not exist.
            Exception: The model error, if the exchange failed.
        """
        session = await self._open_session(thread_id, content, cancel_wake=True)
        response = await session.run()
        return ExchangeResult(thread=await self.store.get(thread_id), response=response)

    async def wake_thread(
        self, thread_id: str, reason: str, *, job_id: str | None = None
    ) -> ExchangeResult:
        """Resume a sleeping thread with its wake reason.

        Threads that are no longer sleeping, or whose pending wake is a
        different job than ``job_id``, are left alone.
        """
        lock = self.locks.get(thread_id)
        await lock.acquire()
        session = None
        try:
            thread = await self.store.get(thread_id)
            if thread.status != ThreadStatus.SLEEPING:
                logger.warning(
                    "Thread %s is %s, not sleeping; skipping wake", thread_id, thread.status.value
                )
            elif job_id is not None and thread.wake_job_id not in (None, job_id):
                logger.warning(
                    "Wake job %s for thread %s was superseded by %s; skipping",
                    job_id,
                    thread_id,
                    thread.wake_job_id,
                )
            else:
                thread = await self.store.clear_wake(thread_id)
                logger.info("Waking thread %s: %s", thread_id, reason)
                session = await self._begin_exchange(thread, wake_message(reason), lock)
        except BaseException:
            lock.release()
            raise

        if session is None:
            lock.release()
            return ExchangeResult(thread=thread, response="")

        response = await session.run()
        return ExchangeResult(thread=await self.store.get(thread_id), response=response)

    async def open_chat(
        self, thread_id: str | None, content: str
    ) -> tuple[Thread, AsyncIterator[StreamChunk]]:
        """Resolve (or create) the chat thread and return its chunk stream.

        The thread is looked up eagerly so an unknown id fails before any
        streaming starts. The exchange itself runs as the stream is consumed.
        """
        if thread_id is None:
            thread = await self.create_thread(ThreadSource.CHAT)
        else:
            thread = await self.store.get(thread_id)
        return thread, self._chat_stream(thread.id, content)

    async def _chat_stream(self, thread_id: str, content: str) -> AsyncIterator[StreamChunk]:
        session = await self._open_session(thread_id, content, cancel_wake=True)
        async with aclosing(session.stream()) as chunks:
            async for chunk in chunks:
                yield chunk

    async def _open_session(
        self, thread_id: str, content: str, *, cancel_wake: bool
    ) -> StreamingSession:
        """Take the thread's lock and prepare an exchange.

        The lock is handed to the session, which releases it once cleanup
        has finished.
        """
        lock = self.locks.get(thread_id)
        await lock.acquire()
        try:
            if cancel_wake:
                await self.scheduler.cancel_wake(thread_id)
            thread = await self.store.get(thread_id)
            return await self._begin_exchange(thread, content, lock)
        except BaseException:
            lock.release()
            raise

    async def _begin_exchange(
        self, thread: Thread, content: str, lock: asyncio.Lock
    ) -> StreamingSession:
        user_message = ThreadMessage(role=MessageRole.USER, content=content)
        base = [*thread.messages, user_message]
        await self.store.update(thread.id, messages=base)

        if self.bus is not None:
            self.bus.emit(
                EventType.THREAD_MESSAGE,
                thread_id=thread.id,
                message_id=user_message.id,
                role="user",
                content=content,
                done=True,
            )

        first_exchange = len([m for m in base if m.role == MessageRole.USER]) == 1
        source = self.model.run(
            system=system_prompt_for(thread),
            messages=base,
            tools=self.tools_for(thread.id),
        )
        logger.info("Starting exchange on thread %s (%d prior messages)", thread.id, len(thread.messages))
        return StreamingSession(
            thread.id,
            source,
            persist=partial(self._write_final, thread.id, base),
            bus=self.bus,
            timeout=self.timeout,
            after=partial(self._after_exchange, thread.id, user_message, first_exchange),
            on_closed=lock.release,
        )

    async def _write_final(
        self, thread_id: str, base: list[ThreadMessage], collected: Sequence[ThreadMessage]
    ) -> None:
        messages = [*base, *collected]

        async def write() -> Thread:
            current = await self.store.get(thread_id)
            return await self.store.update(
                thread_id, messages=messages, status=settle_status(current.status)
            )

        thread = await retry_transient(write, description=f"Final write for thread {thread_id}")
        logger.info(
            "Exchange on thread %s saved (%d messages, status=%s)",
            thread_id,
            len(messages),
            thread.status.value,
        )

    async def _after_exchange(
        self,
        thread_id: str,
        user_message: ThreadMessage,
        first_exchange: bool,
        state: ExchangeState,
    ) -> None:
        thread = await self.store.get(thread_id)
        if self.bus is not None:
            self.bus.emit(EventType.THREAD_UPDATED, id=thread.id, title=thread.title)

        if first_exchange and not thread.title and user_message.content and state.last_assistant_text:
            spawn(
                self._title_thread(thread_id, user_message.content, state.last_assistant_text),
                name=f"title:{thread_id}",
            )

        await self._queue_embeddings(thread_id, [user_message, *state.collected])

    async def _title_thread(self, thread_id: str, user_message: str, response: str) -> None:
        title = await generate_title(self.model, user_message, response)
        if title is None:
            return
        await self.store.update(thread_id, title=title)
        logger.info("Titled thread %s: %s", thread_id, title)
        if self.bus is not None:
            self.bus.emit(EventType.THREAD_UPDATED, id=thread_id, title=title)

    async def _queue_embeddings(self, thread_id: str, messages: Sequence[ThreadMessage]) -> None:
        for message in messages:
            if message.role not in (MessageRole.USER, MessageRole.ASSISTANT):
                continue
            if not should_index(message.content):
                continue
            try:
                await self.queues.enqueue(
                    QueueName.EMBEDDINGS,
                    EMBEDDING_JOB,
                    thread_id=thread_id,
                    message_id=message.id,
                    role=message.role.value,
                    content=message.content,
                    created_at=message.created_at.isoformat(),
                )
            except Exception:
                logger.warning(
                    "Failed to queue embedding for message %s of thread %s",
                    message.id,
                    thread_id,
                    exc_info=True,
                )
