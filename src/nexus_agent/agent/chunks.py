"""Stream chunks produced by the model/tool loop.

Chunks are transient: they are forwarded to the live client as-is and only
their accumulated effect is persisted on the thread.
"""

from __future__ import annotations

from typing import Annotated, Any, Literal

from pydantic import BaseModel, Field, TypeAdapter


class ContentDelta(BaseModel):
    type: Literal["content-delta"] = "content-delta"
    message_id: str
    delta: str


class MessageEnd(BaseModel):
    """Marks the end of one assistant turn (text plus any tool calls in it)."""

    type: Literal["message-end"] = "message-end"
    message_id: str


class ToolCallStart(BaseModel):
    type: Literal["tool-call-start"] = "tool-call-start"
    tool_call_id: str
    tool_name: str


class ToolCallArgsDelta(BaseModel):
    type: Literal["tool-call-args-delta"] = "tool-call-args-delta"
    tool_call_id: str
    delta: str


class ToolCallEnd(BaseModel):
    """Closes a tool call.

    ``result`` is only meaningful when explicitly set: a tool that returned
    JSON null still has a result, while a call that never executed does not.
    """

    type: Literal["tool-call-end"] = "tool-call-end"
    tool_call_id: str
    result: Any = None
    is_error: bool = False

    @property
    def has_result(self) -> bool:
        return "result" in self.model_fields_set


class RunFinished(BaseModel):
    type: Literal["run-finished"] = "run-finished"
    finish_reason: str = "stop"


class RunError(BaseModel):
    """Terminal error event sent to the client; never produced by the model loop."""

    type: Literal["run-error"] = "run-error"
    error: str


StreamChunk = Annotated[
    ContentDelta
    | MessageEnd
    | ToolCallStart
    | ToolCallArgsDelta
    | ToolCallEnd
    | RunFinished
    | RunError,
    Field(discriminator="type"),
]

chunk_adapter: TypeAdapter[StreamChunk] = TypeAdapter(StreamChunk)


def to_sse(chunk: BaseModel) -> str:
    """Encode a chunk as one Server-Sent Events message."""
    return f"data: {chunk.model_dump_json()}\n\n"
