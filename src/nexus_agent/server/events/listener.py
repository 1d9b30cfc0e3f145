"""Redis pub/sub listener relaying bus events to WebSocket clients."""

import asyncio
import logging

import redis.asyncio as redis

from nexus_agent.config import Config
from nexus_agent.events import CHANNEL_PREFIX, decode_event
from nexus_agent.server.events.connection_manager import ConnectionManager, connection_manager

logger = logging.getLogger(__name__)

RECONNECT_DELAY_SECONDS = 5


async def start_event_listener(
    redis_url: str = Config.REDIS_URL.value,
    manager: ConnectionManager = connection_manager,
) -> None:
    """Relay every event published by the API server and the workers.

    Long-running; started from the server lifespan. Subscribes to the
    ``nexus_events:*`` pattern and reconnects on connection errors.
    """
    pattern = f"{CHANNEL_PREFIX}*"
    logger.info("[listener] Starting Redis event listener (redis_url=%s)", redis_url)

    while True:
        try:
            r = redis.from_url(redis_url)
            pubsub = r.pubsub()
            await pubsub.psubscribe(pattern)
            logger.info("[listener] Subscribed to %r, waiting for messages...", pattern)

            async for message in pubsub.listen():
                if message["type"] != "pmessage":
                    logger.debug("[listener] Skipping non-pmessage: %s", message.get("type"))
                    continue

                try:
                    event = decode_event(message["data"])
                    if event is None:
                        continue
                    logger.debug("[listener] Relaying %s", event["type"])
                    await manager.broadcast(event)
                except Exception:
                    logger.exception("[listener] Error processing Redis message")

        except asyncio.CancelledError:
            logger.info("[listener] Shutting down (cancelled)")
            raise
        except Exception:
            logger.exception(
                "[listener] Connection error, reconnecting in %ds...", RECONNECT_DELAY_SECONDS
            )
            await asyncio.sleep(RECONNECT_DELAY_SECONDS)
