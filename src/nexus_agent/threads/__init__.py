"""Thread records, their state machine and stores."""

from nexus_agent.threads.schemas import (
    TERMINAL_STATUSES,
    MessageRole,
    Thread,
    ThreadMessage,
    ThreadSource,
    ThreadStatus,
    ToolCall,
    generate_id,
)
from nexus_agent.threads.state import check_transition, settle_status
from nexus_agent.threads.store import InMemoryThreadStore, ThreadStore

__all__ = [
    "TERMINAL_STATUSES",
    "InMemoryThreadStore",
    "MessageRole",
    "Thread",
    "ThreadMessage",
    "ThreadSource",
    "ThreadStatus",
    "ThreadStore",
    "ToolCall",
    "check_transition",
    "generate_id",
    "settle_status",
]
