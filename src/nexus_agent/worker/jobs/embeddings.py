"""Embedding job: index one message for history search."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from nexus_agent.worker.hooks import runtime_from
from nexus_agent.worker.tracing import traced_job

if TYPE_CHECKING:
    from saq.types import Context

logger = logging.getLogger(__name__)


@traced_job
async def process_embedding(
    ctx: Context,
    *,
    thread_id: str,
    message_id: str,
    role: str,
    content: str,
    created_at: str,
) -> dict[str, object]:
    """Embed a message with OpenAI and upsert it into Qdrant."""
    index = runtime_from(ctx).index
    if index is None:
        msg = "Embeddings are not configured (OPENAI_API_KEY is empty)"
        raise RuntimeError(msg)

    point_id = await index.index_message(
        thread_id=thread_id,
        message_id=message_id,
        role=role,
        content=content,
        created_at=created_at,
    )
    logger.info("Indexed message %s of thread %s as %s", message_id, thread_id, point_id)
    return {"status": "ok", "point_id": point_id}
