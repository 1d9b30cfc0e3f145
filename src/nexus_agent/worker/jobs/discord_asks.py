"""Discord ask job: answer a deferred slash command with the agent's reply."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from nexus_agent.discord import truncate
from nexus_agent.worker.hooks import runtime_from
from nexus_agent.worker.tracing import traced_job

if TYPE_CHECKING:
    from saq.types import Context

logger = logging.getLogger(__name__)

# Leaves headroom under Discord's 2000 character limit
REPLY_LIMIT = 1900

APOLOGY = "Sorry, I encountered an error processing your request. Please try again."


@traced_job
async def process_discord_ask(
    ctx: Context,
    *,
    thread_id: str,
    content: str,
    interaction_token: str,
    application_id: str,
) -> dict[str, object]:
    """Send the question to the thread and edit the deferred reply with the answer.

    On failure the user gets a best-effort apology and the error is re-raised.
    """
    runtime = runtime_from(ctx)
    notifier = runtime.notifier

    try:
        result = await runtime.service.send_message(thread_id, content)
        await notifier.edit_interaction_reply(
            application_id, interaction_token, truncate(result.response, REPLY_LIMIT)
        )
    except Exception:
        logger.exception("Discord ask on thread %s failed", thread_id)
        try:
            await notifier.edit_interaction_reply(application_id, interaction_token, APOLOGY)
        except Exception:
            logger.warning("Could not send apology for thread %s", thread_id, exc_info=True)
        raise

    return {"status": "ok", "thread_id": thread_id, "response_length": len(result.response)}
