"""Request and response models for the HTTP API."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field

from nexus_agent.agent.tools import ToolInfo
from nexus_agent.threads import Thread, ThreadSource, ThreadStatus


class ThreadSummary(BaseModel):
    """Thread without its messages, for listings."""

    id: str
    status: ThreadStatus
    source: ThreadSource
    source_id: str | None
    title: str | None
    message_count: int
    wake_reason: str | None
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_thread(cls, thread: Thread) -> ThreadSummary:
        return cls(
            id=thread.id,
            status=thread.status,
            source=thread.source,
            source_id=thread.source_id,
            title=thread.title,
            message_count=len(thread.messages),
            wake_reason=thread.wake_reason,
            created_at=thread.created_at,
            updated_at=thread.updated_at,
        )


class ThreadDetail(Thread):
    last_response: str | None = None


class CreateThreadRequest(BaseModel):
    source: ThreadSource = ThreadSource.CHAT
    source_id: str | None = None
    initial_message: str | None = None


class SendMessageRequest(BaseModel):
    content: str = Field(min_length=1)


class ChatRequest(BaseModel):
    """One user turn; the server holds the conversation history."""

    thread_id: str | None = None
    content: str = Field(min_length=1)


class ToolsResponse(BaseModel):
    total: int
    by_category: dict[str, int]
    tools: list[ToolInfo]


class WebhookAccepted(BaseModel):
    status: str = "queued"
    job_id: str
