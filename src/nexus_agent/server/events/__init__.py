"""Server-side event streaming components."""

from nexus_agent.server.events.connection_manager import ConnectionManager, connection_manager
from nexus_agent.server.events.listener import start_event_listener

__all__ = [
    "ConnectionManager",
    "connection_manager",
    "start_event_listener",
]
