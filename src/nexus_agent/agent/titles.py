"""Conversation titles generated after the first exchange."""

from __future__ import annotations

import logging

from nexus_agent.agent.model import AgentModel
from nexus_agent.agent.prompts import TITLE_MAX_TOKENS, clean_title, title_prompt

logger = logging.getLogger(__name__)


async def generate_title(model: AgentModel, user_message: str, response: str) -> str | None:
    """Ask the model for a short title. Returns None on failure or an empty reply."""
    try:
        raw = await model.complete(
            prompt=title_prompt(user_message, response), max_tokens=TITLE_MAX_TOKENS
        )
    except Exception:
        logger.warning("Title generation failed", exc_info=True)
        return None

    title = clean_title(raw)
    return title or None
