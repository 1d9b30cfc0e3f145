"""Pydantic schemas for event payloads."""

from typing import Any, Literal

from pydantic import BaseModel


class ThreadUpdatedPayload(BaseModel):
    """Payload for THREAD_UPDATED events.

    Emitted after every exchange and when a title is generated.
    """

    id: str
    title: str | None = None


class ThreadMessagePayload(BaseModel):
    """Payload for THREAD_MESSAGE events (live text deltas)."""

    thread_id: str
    message_id: str
    role: Literal["user", "assistant", "system"]
    content: str
    done: bool


class ThreadToolCallPayload(BaseModel):
    """Payload for THREAD_TOOL_CALL events."""

    thread_id: str
    tool_name: str
    args: dict[str, Any] | None = None
    status: Literal["calling", "complete", "error"]
    result: str | None = None


class QueueJobAddedPayload(BaseModel):
    queue: str
    job_id: str
    name: str
    delay: float | None = None


class QueueJobCompletedPayload(BaseModel):
    queue: str
    job_id: str


class QueueJobFailedPayload(BaseModel):
    queue: str
    job_id: str
    reason: str | None = None


class QueueStatsPayload(BaseModel):
    """Snapshot of a queue's counters."""

    queue: str
    queued: int
    active: int
    scheduled: int
