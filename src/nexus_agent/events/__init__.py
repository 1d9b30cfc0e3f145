"""Event bus for live thread and queue notifications."""

from nexus_agent.events.bus import CHANNEL_PREFIX, EventBus, EventType, decode_event
from nexus_agent.events.payloads import (
    QueueJobAddedPayload,
    QueueJobCompletedPayload,
    QueueJobFailedPayload,
    QueueStatsPayload,
    ThreadMessagePayload,
    ThreadToolCallPayload,
    ThreadUpdatedPayload,
)

__all__ = [
    "CHANNEL_PREFIX",
    "EventBus",
    "EventType",
    "QueueJobAddedPayload",
    "QueueJobCompletedPayload",
    "QueueJobFailedPayload",
    "QueueStatsPayload",
    "ThreadMessagePayload",
    "ThreadToolCallPayload",
    "ThreadUpdatedPayload",
    "decode_event",
]
