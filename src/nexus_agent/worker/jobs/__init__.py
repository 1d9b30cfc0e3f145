"""Job functions, one per queue."""

from nexus_agent.worker.jobs.discord_asks import process_discord_ask
from nexus_agent.worker.jobs.embeddings import process_embedding
from nexus_agent.worker.jobs.system_events import process_system_event
from nexus_agent.worker.jobs.wake import process_wake

__all__ = [
    "process_discord_ask",
    "process_embedding",
    "process_system_event",
    "process_wake",
]
