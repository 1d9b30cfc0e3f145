"""SAQ worker settings, one dict per queue.

Each queue runs in its own worker process:

    saq nexus_agent.worker.settings.wake_settings
    saq nexus_agent.worker.settings.system_event_settings
    saq nexus_agent.worker.settings.discord_ask_settings
    saq nexus_agent.worker.settings.embedding_settings
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

from saq import Queue

from nexus_agent.config import Config
from nexus_agent.logging_config import setup_logging
from nexus_agent.queues import QUEUE_POLICIES, QueueName
from nexus_agent.worker import hooks
from nexus_agent.worker.jobs import (
    process_discord_ask,
    process_embedding,
    process_system_event,
    process_wake,
)

# Configure logging before anything else; startup switches to a per-queue file
setup_logging("worker")

logger = logging.getLogger(__name__)


def _settings(
    name: QueueName,
    functions: list[Callable[..., Any]],
    startup: Callable[..., Any] = hooks.startup,
) -> dict[str, Any]:
    queue = Queue.from_url(Config.REDIS_URL.value, name=name.value)
    logger.debug("Created queue: %s (redis_url=%s)", queue, Config.REDIS_URL.value)
    return {
        "queue": queue,
        "functions": functions,
        "concurrency": QUEUE_POLICIES[name].concurrency,
        "startup": startup,
        "shutdown": hooks.shutdown,
        "after_process": hooks.after_process,
    }


wake_settings = _settings(QueueName.AGENT_WAKES, [process_wake])
system_event_settings = _settings(QueueName.EVENTS_SYSTEM, [process_system_event])
discord_ask_settings = _settings(QueueName.DISCORD_ASKS, [process_discord_ask])
embedding_settings = _settings(
    QueueName.EMBEDDINGS, [process_embedding], startup=hooks.embedding_startup
)
