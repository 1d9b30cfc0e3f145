"""Typed event bus for live dashboard notifications.

Events are not persisted: local subscribers are called synchronously and,
when a Redis client is attached, the event is also published on
``nexus_events:{topic}`` so the API server can relay events raised inside
queue workers to its WebSocket clients.
"""

from __future__ import annotations

import json
import logging
from collections import defaultdict
from collections.abc import Callable
from enum import Enum
from typing import Any

import redis.asyncio as redis
from pydantic import BaseModel

from nexus_agent.events.payloads import (
    QueueJobAddedPayload,
    QueueJobCompletedPayload,
    QueueJobFailedPayload,
    QueueStatsPayload,
    ThreadMessagePayload,
    ThreadToolCallPayload,
    ThreadUpdatedPayload,
)
from nexus_agent.tasks import spawn

logger = logging.getLogger(__name__)

CHANNEL_PREFIX = "nexus_events:"


class EventType(str, Enum):
    """Topics published on the bus."""

    THREAD_UPDATED = "thread.updated"
    THREAD_MESSAGE = "thread.message"
    THREAD_TOOL_CALL = "thread.tool_call"
    QUEUE_JOB_ADDED = "queue.job.added"
    QUEUE_JOB_COMPLETED = "queue.job.completed"
    QUEUE_JOB_FAILED = "queue.job.failed"
    QUEUE_STATS = "queue.stats"


PAYLOAD_TYPES: dict[EventType, type[BaseModel]] = {
    EventType.THREAD_UPDATED: ThreadUpdatedPayload,
    EventType.THREAD_MESSAGE: ThreadMessagePayload,
    EventType.THREAD_TOOL_CALL: ThreadToolCallPayload,
    EventType.QUEUE_JOB_ADDED: QueueJobAddedPayload,
    EventType.QUEUE_JOB_COMPLETED: QueueJobCompletedPayload,
    EventType.QUEUE_JOB_FAILED: QueueJobFailedPayload,
    EventType.QUEUE_STATS: QueueStatsPayload,
}

Listener = Callable[[EventType, BaseModel], None]


class EventBus:
    """Publish/subscribe channel passed explicitly to every publisher."""

    def __init__(self, redis_client: redis.Redis | None = None) -> None:  # type: ignore[type-arg]
        self._redis = redis_client
        self._listeners: dict[EventType, list[Listener]] = defaultdict(list)

    @classmethod
    def from_url(cls, redis_url: str) -> EventBus:
        return cls(redis.from_url(redis_url))

    def subscribe(self, event_type: EventType, listener: Listener) -> Callable[[], None]:
        """Register a listener; returns a function that removes it."""
        self._listeners[event_type].append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners[event_type]:
                self._listeners[event_type].remove(listener)

        return unsubscribe

    def emit(self, event_type: EventType, **fields: Any) -> BaseModel:
        """Validate and publish an event without blocking the caller.

        Args:
            event_type: Topic to publish on.
            **fields: Payload fields, validated against the topic's schema.

        Returns:
            The validated payload.
        """
        payload = PAYLOAD_TYPES[event_type].model_validate(fields)
        logger.debug("Emitting %s: %s", event_type.value, payload)

        for listener in list(self._listeners[event_type]):
            try:
                listener(event_type, payload)
            except Exception:
                logger.exception("Event listener failed for %s", event_type.value)

        if self._redis is not None:
            spawn(self._publish(event_type, payload), name=f"publish:{event_type.value}")

        return payload

    async def _publish(self, event_type: EventType, payload: BaseModel) -> None:
        assert self._redis is not None
        channel = f"{CHANNEL_PREFIX}{event_type.value}"
        message = json.dumps(
            {"type": event_type.value, "payload": payload.model_dump(mode="json")}
        )
        try:
            await self._redis.publish(channel, message)
        except Exception:
            logger.exception("Failed to publish %s to Redis", event_type.value)

    async def close(self) -> None:
        if self._redis is not None:
            await self._redis.aclose()


def decode_event(raw: str | bytes) -> dict[str, Any] | None:
    """Parse an event published by EventBus, ignoring malformed messages."""
    if isinstance(raw, bytes):
        raw = raw.decode("utf-8")
    try:
        data = json.loads(raw)
    except json.JSONDecodeError:
        logger.warning("Dropping malformed event message: %r", raw[:200])
        return None
    if not isinstance(data, dict) or "type" not in data:
        return None
    return data


__all__ = ["CHANNEL_PREFIX", "EventBus", "EventType", "decode_event"]
