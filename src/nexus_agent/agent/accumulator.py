"""Pure accumulator turning a chunk stream into persisted thread messages.

``advance`` never performs I/O. It returns the next state, the chunk to
forward to the client (always the input chunk) and, on ``run-finished``, a
persist action carrying every message collected during the exchange. The
streaming session drives it and owns all side effects.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field, replace
from types import MappingProxyType
from collections.abc import Mapping
from typing import Any

from nexus_agent.agent.chunks import (
    ContentDelta,
    MessageEnd,
    RunFinished,
    StreamChunk,
    ToolCallArgsDelta,
    ToolCallEnd,
    ToolCallStart,
)
from nexus_agent.threads.schemas import MessageRole, ThreadMessage, ToolCall

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ToolCallBuffer:
    name: str
    args: str = ""


@dataclass(frozen=True)
class ExchangeState:
    """Everything accumulated so far in one exchange.

    Attributes:
        text_buffer: Assistant text since the last message-end.
        tool_call_buffers: Open tool calls keyed by call id.
        pending_tool_calls: Tool calls closed since the last flush.
        pending_results: Tool result messages waiting to follow their
            assistant message.
        collected: Messages flushed so far, in order.
        last_assistant_text: Text of the most recent non-empty assistant turn.
    """

    text_buffer: str = ""
    tool_call_buffers: Mapping[str, ToolCallBuffer] = field(
        default_factory=lambda: MappingProxyType({})
    )
    pending_tool_calls: tuple[ToolCall, ...] = ()
    pending_results: tuple[ThreadMessage, ...] = ()
    collected: tuple[ThreadMessage, ...] = ()
    last_assistant_text: str | None = None

    @property
    def response_text(self) -> str:
        """All assistant text collected so far, joined in order."""
        return "".join(
            m.content for m in self.collected
            if m.role == MessageRole.ASSISTANT and m.content
        )


@dataclass(frozen=True)
class PersistAction:
    messages: tuple[ThreadMessage, ...]


@dataclass(frozen=True)
class Transition:
    state: ExchangeState
    forward: StreamChunk
    persist: PersistAction | None = None


def _with_buffers(
    state: ExchangeState, buffers: dict[str, ToolCallBuffer]
) -> ExchangeState:
    return replace(state, tool_call_buffers=MappingProxyType(buffers))


def result_content(result: Any) -> str:
    if isinstance(result, str):
        return result
    return json.dumps(result, default=str)


def flush(state: ExchangeState, message_id: str | None = None) -> ExchangeState:
    """Move buffered text, closed tool calls and their results into collected."""
    new_messages: list[ThreadMessage] = []
    text = state.text_buffer

    if text or state.pending_tool_calls:
        assistant = ThreadMessage(
            role=MessageRole.ASSISTANT,
            content=text or None,
            tool_calls=list(state.pending_tool_calls) or None,
        )
        if message_id is not None:
            assistant = assistant.model_copy(update={"id": message_id})
        new_messages.append(assistant)

    new_messages.extend(state.pending_results)

    if not new_messages:
        return state

    return replace(
        state,
        text_buffer="",
        pending_tool_calls=(),
        pending_results=(),
        collected=state.collected + tuple(new_messages),
        last_assistant_text=text or state.last_assistant_text,
    )


def advance(state: ExchangeState, chunk: StreamChunk) -> Transition:
    """Apply one chunk to the exchange state.

    Args:
        state: Current state.
        chunk: Next chunk from the model/tool loop, in arrival order.

    Returns:
        The transition; ``forward`` is always ``chunk``.
    """
    if isinstance(chunk, ContentDelta):
        return Transition(replace(state, text_buffer=state.text_buffer + chunk.delta), chunk)

    if isinstance(chunk, MessageEnd):
        return Transition(flush(state, chunk.message_id), chunk)

    if isinstance(chunk, ToolCallStart):
        buffers = dict(state.tool_call_buffers)
        buffers[chunk.tool_call_id] = ToolCallBuffer(name=chunk.tool_name)
        return Transition(_with_buffers(state, buffers), chunk)

    if isinstance(chunk, ToolCallArgsDelta):
        buffer = state.tool_call_buffers.get(chunk.tool_call_id)
        if buffer is None:
            logger.warning("Args delta for unknown tool call %s", chunk.tool_call_id)
            return Transition(state, chunk)
        buffers = dict(state.tool_call_buffers)
        buffers[chunk.tool_call_id] = replace(buffer, args=buffer.args + chunk.delta)
        return Transition(_with_buffers(state, buffers), chunk)

    if isinstance(chunk, ToolCallEnd):
        buffers = dict(state.tool_call_buffers)
        buffer = buffers.pop(chunk.tool_call_id, None)
        if buffer is None:
            logger.warning("End for unknown tool call %s", chunk.tool_call_id)
            return Transition(state, chunk)

        call = ToolCall(id=chunk.tool_call_id, name=buffer.name, arguments=buffer.args)
        results = state.pending_results
        if chunk.has_result:
            results = results + (
                ThreadMessage(
                    role=MessageRole.TOOL,
                    content=result_content(chunk.result),
                    tool_call_id=chunk.tool_call_id,
                ),
            )
        else:
            logger.warning(
                "Tool call %s (%s) ended without a result", chunk.tool_call_id, buffer.name
            )

        next_state = replace(
            _with_buffers(state, buffers),
            pending_tool_calls=state.pending_tool_calls + (call,),
            pending_results=results,
        )
        return Transition(next_state, chunk)

    if isinstance(chunk, RunFinished):
        finished = flush(state)
        return Transition(finished, chunk, PersistAction(finished.collected))

    return Transition(state, chunk)
