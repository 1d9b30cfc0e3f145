"""Streaming session: forwards model chunks live and persists their effect.

The session sits between the model/tool loop and the client. Every chunk is
forwarded as soon as it arrives; the pure accumulator decides what gets
persisted and when. Cleanup (closing the model stream, persisting whatever
was flushed, then the post-exchange hook) always runs, whether the stream
ends normally, times out, fails or the client goes away.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Awaitable, Callable, Sequence

from nexus_agent.agent.accumulator import (
    ExchangeState,
    PersistAction,
    advance,
    result_content,
)
from nexus_agent.agent.chunks import (
    ContentDelta,
    MessageEnd,
    RunError,
    RunFinished,
    StreamChunk,
    ToolCallEnd,
    ToolCallStart,
)
from nexus_agent.config import Config
from nexus_agent.events import EventBus, EventType
from nexus_agent.tasks import spawn
from nexus_agent.threads.schemas import ThreadMessage, ToolCall

logger = logging.getLogger(__name__)

Persister = Callable[[Sequence[ThreadMessage]], Awaitable[None]]
AfterHook = Callable[[ExchangeState], Awaitable[None]]


class StreamingSession:
    """One exchange on one thread.

    Args:
        thread_id: Thread the exchange belongs to.
        source: The model/tool loop's chunk stream.
        persist: Writes the messages collected during the exchange. Called at
            most once. Exceptions are logged and swallowed.
        bus: Receives live message and tool call events.
        timeout: Wall-clock budget for the whole exchange, in seconds.
        after: Runs once at the end with the final state (titles, indexing).
        on_closed: Called when cleanup has finished, even if it failed.
    """

    def __init__(
        self,
        thread_id: str,
        source: AsyncIterator[StreamChunk],
        *,
        persist: Persister,
        bus: EventBus | None = None,
        timeout: float = Config.EXCHANGE_TIMEOUT_SECONDS.value,
        after: AfterHook | None = None,
        on_closed: Callable[[], None] | None = None,
    ) -> None:
        self.thread_id = thread_id
        self._source = source
        self._persist_fn = persist
        self._bus = bus
        self._timeout = timeout
        self._after = after
        self._on_closed = on_closed

        self.state = ExchangeState()
        self.error: BaseException | None = None
        self.finish_reason: str | None = None
        self._persisted = False
        self._started = False
        self._cleanup: asyncio.Task[None] | None = None

    @property
    def response_text(self) -> str:
        return self.state.response_text

    async def stream(self) -> AsyncIterator[StreamChunk]:
        """Forward chunks to the caller while accumulating them.

        Yields every chunk from the model loop unchanged. A timeout is
        reported as ``run-finished`` with ``finish_reason="timeout"``; a model
        error ends the stream with a ``run-error`` chunk.
        """
        if self._started:
            msg = "A streaming session can only be consumed once"
            raise RuntimeError(msg)
        self._started = True

        deadline = asyncio.get_running_loop().time() + self._timeout
        try:
            while True:
                chunk = await self._next_chunk(deadline)
                if chunk is None:
                    break

                previous = self.state
                transition = advance(previous, chunk)
                self.state = transition.state

                yield transition.forward

                self._publish(previous, transition.forward)
                if transition.persist is not None:
                    await self._run_persist(transition.persist)
                if isinstance(chunk, RunFinished):
                    self.finish_reason = chunk.finish_reason
                    break
        except Exception as exc:
            logger.exception("Exchange on thread %s failed", self.thread_id)
            self.error = exc
            yield RunError(error=str(exc) or type(exc).__name__)
        finally:
            # Spawned so cleanup survives the consumer being cancelled
            self._cleanup = spawn(self._finalize(), name=f"session-cleanup:{self.thread_id}")

    async def run(self) -> str:
        """Drain the stream without a client and wait for cleanup.

        Returns:
            The assistant text produced during the exchange.

        Raises:
            The model error, if the exchange failed.
        """
        async for _ in self.stream():
            pass
        await self.wait_closed()
        if self.error is not None:
            raise self.error
        return self.response_text

    async def wait_closed(self) -> None:
        """Wait until cleanup has finished."""
        if self._cleanup is not None:
            await asyncio.shield(self._cleanup)

    async def _next_chunk(self, deadline: float) -> StreamChunk | None:
        timer = asyncio.timeout_at(deadline)
        try:
            async with timer:
                return await anext(self._source)
        except StopAsyncIteration:
            if not self._persisted:
                logger.warning("Model stream for thread %s ended without run-finished", self.thread_id)
            return None
        except TimeoutError:
            if not timer.expired():
                raise
            logger.warning(
                "Exchange on thread %s timed out after %.0fs", self.thread_id, self._timeout
            )
            return RunFinished(finish_reason="timeout")

    async def _run_persist(self, action: PersistAction) -> None:
        if self._persisted:
            return
        self._persisted = True
        try:
            await self._persist_fn(action.messages)
        except Exception:
            logger.exception(
                "Failed to persist %d messages for thread %s", len(action.messages), self.thread_id
            )

    async def _finalize(self) -> None:
        try:
            await self._cleanup_exchange()
        finally:
            if self._on_closed is not None:
                self._on_closed()

    async def _cleanup_exchange(self) -> None:
        try:
            await self._source.aclose()  # type: ignore[attr-defined]
        except Exception:
            logger.warning("Error closing model stream for thread %s", self.thread_id, exc_info=True)

        if not self._persisted:
            # Only completed turns are kept; an unfinished text buffer is dropped
            logger.info(
                "Persisting partial exchange for thread %s (%d messages)",
                self.thread_id,
                len(self.state.collected),
            )
            await self._run_persist(PersistAction(self.state.collected))

        if self._after is not None:
            try:
                await self._after(self.state)
            except Exception:
                logger.exception("Post-exchange hook failed for thread %s", self.thread_id)

    def _publish(self, previous: ExchangeState, chunk: StreamChunk) -> None:
        if self._bus is None:
            return

        if isinstance(chunk, ContentDelta):
            self._bus.emit(
                EventType.THREAD_MESSAGE,
                thread_id=self.thread_id,
                message_id=chunk.message_id,
                role="assistant",
                content=chunk.delta,
                done=False,
            )
        elif isinstance(chunk, MessageEnd):
            self._bus.emit(
                EventType.THREAD_MESSAGE,
                thread_id=self.thread_id,
                message_id=chunk.message_id,
                role="assistant",
                content=previous.text_buffer,
                done=True,
            )
        elif isinstance(chunk, ToolCallStart):
            self._bus.emit(
                EventType.THREAD_TOOL_CALL,
                thread_id=self.thread_id,
                tool_name=chunk.tool_name,
                status="calling",
            )
        elif isinstance(chunk, ToolCallEnd):
            buffer = previous.tool_call_buffers.get(chunk.tool_call_id)
            if buffer is None:
                return
            call = ToolCall(id=chunk.tool_call_id, name=buffer.name, arguments=buffer.args)
            result = None
            if chunk.has_result:
                result = result_content(chunk.result)
            self._bus.emit(
                EventType.THREAD_TOOL_CALL,
                thread_id=self.thread_id,
                tool_name=buffer.name,
                args=call.parsed_arguments(),
                status="error" if chunk.is_error else "complete",
                result=result,
            )
