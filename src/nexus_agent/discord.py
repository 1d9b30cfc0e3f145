"""Discord webhook client for notifications and interaction replies."""

from __future__ import annotations

import logging

import aiohttp

from nexus_agent.config import Config

logger = logging.getLogger(__name__)

# Discord rejects message content above 2000 characters
MAX_MESSAGE_LENGTH = 2000


class DiscordError(Exception):
    """Raised when Discord rejects a request."""


def truncate(text: str, limit: int = 1900) -> str:
    return text if len(text) <= limit else f"{text[: limit - 3]}..."


class DiscordNotifier:
    """Posts agent notifications and edits deferred slash-command replies."""

    def __init__(
        self,
        webhook_url: str = Config.DISCORD_WEBHOOK_URL.value,
        api_url: str = Config.DISCORD_API_URL.value,
    ) -> None:
        self._webhook_url = webhook_url
        self._api_url = api_url.rstrip("/")

    @property
    def configured(self) -> bool:
        return bool(self._webhook_url)

    async def notify(self, message: str) -> bool:
        """Send a notification to the configured webhook.

        Returns:
            True if Discord accepted the message, False if no webhook is
            configured or the request failed.
        """
        if not self._webhook_url:
            logger.warning("Discord webhook not configured, notification not sent")
            return False

        async with aiohttp.ClientSession() as session:
            try:
                async with session.post(
                    self._webhook_url,
                    json={"content": message[:MAX_MESSAGE_LENGTH]},
                ) as response:
                    if response.status >= 400:
                        body = await response.text()
                        logger.error(
                            "Discord webhook returned %s: %s", response.status, body[:200]
                        )
                        return False
            except aiohttp.ClientError:
                logger.exception("Failed to send Discord notification")
                return False

        logger.info("Sent Discord notification (%d chars)", len(message))
        return True

    async def edit_interaction_reply(
        self, application_id: str, interaction_token: str, content: str
    ) -> None:
        """Replace the deferred reply of a slash-command interaction.

        Raises:
            DiscordError: If Discord returns an error status.
        """
        url = f"{self._api_url}/webhooks/{application_id}/{interaction_token}/messages/@original"
        async with aiohttp.ClientSession() as session, session.patch(
            url, json={"content": content[:MAX_MESSAGE_LENGTH]}
        ) as response:
            if response.status >= 400:
                body = await response.text()
                msg = f"Discord API error: {response.status} - {body[:200]}"
                raise DiscordError(msg)
