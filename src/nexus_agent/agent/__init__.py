"""Agent loop, streaming sessions and thread-level operations."""

from nexus_agent.agent.alerts import AlertIngestor, AlertInput
from nexus_agent.agent.model import AgentModel, AnthropicAgentModel
from nexus_agent.agent.service import AgentService, ExchangeResult
from nexus_agent.agent.session import StreamingSession
from nexus_agent.agent.tools import Tool, ToolInfo, ToolRegistry
from nexus_agent.agent.wake import ScheduledWake, WakeScheduler, parse_delay

__all__ = [
    "AgentModel",
    "AgentService",
    "AlertIngestor",
    "AlertInput",
    "AnthropicAgentModel",
    "ExchangeResult",
    "ScheduledWake",
    "StreamingSession",
    "Tool",
    "ToolInfo",
    "ToolRegistry",
    "WakeScheduler",
    "parse_delay",
]
