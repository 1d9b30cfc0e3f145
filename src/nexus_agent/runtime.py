"""Wiring of the shared objects used by the API server and the workers."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from nexus_agent import tasks
from nexus_agent.agent.alerts import AlertIngestor
from nexus_agent.agent.model import AnthropicAgentModel
from nexus_agent.agent.service import AgentService
from nexus_agent.agent.wake import WakeScheduler
from nexus_agent.config import Config
from nexus_agent.discord import DiscordNotifier
from nexus_agent.embeddings import EmbeddingIndex
from nexus_agent.events import EventBus
from nexus_agent.queues import QueueManager
from nexus_agent.threads import ThreadStore
from nexus_agent.threads.sql_store import SqlThreadStore

logger = logging.getLogger(__name__)


@dataclass
class Runtime:
    store: ThreadStore
    bus: EventBus
    queues: QueueManager
    scheduler: WakeScheduler
    service: AgentService
    alerts: AlertIngestor
    notifier: DiscordNotifier
    index: EmbeddingIndex | None = None

    async def close(self) -> None:
        """Let background work finish, then close every connection."""
        await tasks.drain(timeout=10)
        await self.queues.close()
        await self.store.close()
        if self.index is not None:
            await self.index.close()
        await self.bus.close()
        logger.info("Runtime closed")


async def build_runtime() -> Runtime:
    """Create the runtime from Config (Redis, Postgres, Anthropic, optional embeddings)."""
    bus = EventBus.from_url(Config.REDIS_URL.value)
    queues = QueueManager.from_url(Config.REDIS_URL.value, bus)
    await queues.connect()

    store = SqlThreadStore.from_url(Config.DATABASE_URL.value)
    scheduler = WakeScheduler(store, queues)
    notifier = DiscordNotifier()

    index = None
    if Config.OPENAI_API_KEY.value:
        index = EmbeddingIndex.from_config()
    else:
        logger.warning("OPENAI_API_KEY not set, history search and embeddings disabled")

    service = AgentService(
        store,
        queues,
        scheduler,
        AnthropicAgentModel(),
        bus=bus,
        notifier=notifier,
        index=index,
    )
    logger.info("Runtime ready (model=%s)", Config.AI_MODEL.value)
    return Runtime(
        store=store,
        bus=bus,
        queues=queues,
        scheduler=scheduler,
        service=service,
        alerts=AlertIngestor(service),
        notifier=notifier,
        index=index,
    )
