"""Pydantic models for threads and their messages."""

from __future__ import annotations

import json
from datetime import UTC, datetime
from enum import Enum
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field


def generate_id() -> str:
    """Generate a short opaque identifier."""
    return uuid4().hex[:8]


def utcnow() -> datetime:
    return datetime.now(tz=UTC)


class ThreadStatus(str, Enum):
    """Lifecycle status of a thread."""

    ACTIVE = "active"
    SLEEPING = "sleeping"
    COMPLETE = "complete"
    FAILED = "failed"


TERMINAL_STATUSES = frozenset({ThreadStatus.COMPLETE, ThreadStatus.FAILED})


class ThreadSource(str, Enum):
    """Where a thread originated."""

    CHAT = "chat"
    DISCORD = "discord"
    EVENT = "event"
    SCHEDULED = "scheduled"
    ALERT = "alert"


class MessageRole(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"
    SYSTEM = "system"


class ToolCall(BaseModel):
    """A completed tool invocation requested by the model.

    Arguments are kept as the raw JSON string the model streamed, so a
    malformed argument payload is persisted exactly as it was produced.
    """

    id: str
    name: str
    arguments: str = ""

    def parsed_arguments(self) -> dict[str, Any]:
        """Decode the argument string, treating empty or invalid JSON as no arguments."""
        if not self.arguments:
            return {}
        try:
            value = json.loads(self.arguments)
        except json.JSONDecodeError:
            return {}
        return value if isinstance(value, dict) else {}


class ThreadMessage(BaseModel):
    """One role-tagged entry in a thread's conversation."""

    id: str = Field(default_factory=generate_id)
    role: MessageRole
    content: str | None = None
    tool_calls: list[ToolCall] | None = None
    tool_call_id: str | None = None
    created_at: datetime = Field(default_factory=utcnow)


class Thread(BaseModel):
    """Durable record of one conversational task."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    status: ThreadStatus = ThreadStatus.ACTIVE
    source: ThreadSource
    source_id: str | None = None
    title: str | None = None
    messages: list[ThreadMessage] = Field(default_factory=list)
    context: dict[str, Any] = Field(default_factory=dict)
    wake_job_id: str | None = None
    wake_reason: str | None = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def user_messages(self) -> list[ThreadMessage]:
        return [m for m in self.messages if m.role == MessageRole.USER]
