"""
Outbound status channel.

One evolving embed per session (sent once, then edited in place) plus
append-only text notices. Delivery is best-effort: failures are logged
and never propagate into the pipeline.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Protocol, runtime_checkable

import httpx

from reel_relay.config import Settings

logger = logging.getLogger(__name__)


@dataclass
class EmbedField:
    name: str
    value: str
    inline: bool = True


@dataclass
class StatusEmbed:
    """
    Structured status message.

    Attributes:
        title: Embed title
        description: Body text
        fields: Name/value tuples
        color: 24-bit RGB colour signalling the phase
        timestamp: When the embed was rendered
    """

    title: str
    description: str
    fields: list[EmbedField] = field(default_factory=list)
    color: int = 0x3498DB
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_payload(self) -> dict:
        return {
            "title": self.title,
            "description": self.description,
            "color": self.color,
            "timestamp": self.timestamp.isoformat(),
            "fields": [
                {"name": f.name, "value": f.value, "inline": f.inline}
                for f in self.fields
            ],
        }


@runtime_checkable
class StatusChannel(Protocol):
    """
    Destination for status embeds and notices.

    Example:
        message_id = await channel.send_embed(embed)
        await channel.edit_embed(message_id, updated)
        await channel.send_text("ℹ️ Starting upload")
    """

    async def send_embed(self, embed: StatusEmbed) -> str | None:
        """Post a new embed, returning its message id (None if delivery failed)."""
        ...

    async def edit_embed(self, message_id: str, embed: StatusEmbed) -> None:
        """Replace a previously posted embed."""
        ...

    async def send_text(self, text: str) -> None:
        """Post an append-only text notice."""
        ...


class LogStatusChannel:
    """StatusChannel that only writes log records (no webhook configured)."""

    def __init__(self) -> None:
        self._counter = 0

    async def send_embed(self, embed: StatusEmbed) -> str | None:
        self._counter += 1
        logger.info(f"[status] {embed.title}: {embed.description}")
        return str(self._counter)

    async def edit_embed(self, message_id: str, embed: StatusEmbed) -> None:
        logger.info(f"[status {message_id}] {embed.title}: {embed.description}")

    async def send_text(self, text: str) -> None:
        logger.info(f"[notice] {text}")


class WebhookStatusChannel:
    """
    StatusChannel backed by a chat webhook.

    Posts with ``?wait=true`` so the created message id is returned, and
    edits through ``PATCH <webhook>/messages/<id>``.

    Example:
        async with WebhookStatusChannel(url) as channel:
            message_id = await channel.send_embed(embed)
    """

    def __init__(self, webhook_url: str, timeout: float = 10.0, http_client: httpx.AsyncClient | None = None):
        self.webhook_url = webhook_url.rstrip("/")
        self.timeout = timeout
        self.http_client = http_client or httpx.AsyncClient(timeout=None)

    @classmethod
    def from_settings(cls, settings: Settings) -> "StatusChannel":
        """Webhook channel when a URL is configured, log-only channel otherwise."""
        if not settings.status_webhook_url:
            logger.warning("STATUS_WEBHOOK_URL not set, status updates go to the log only")
            return LogStatusChannel()
        return cls(settings.status_webhook_url)

    async def close(self) -> None:
        await self.http_client.aclose()

    async def __aenter__(self) -> "WebhookStatusChannel":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def send_embed(self, embed: StatusEmbed) -> str | None:
        try:
            response = await self.http_client.post(
                self.webhook_url,
                params={"wait": "true"},
                json={"embeds": [embed.to_payload()]},
                timeout=self.timeout,
            )
            response.raise_for_status()
            return str(response.json().get("id"))
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"Failed to send status message: {e}")
            return None

    async def edit_embed(self, message_id: str, embed: StatusEmbed) -> None:
        try:
            response = await self.http_client.patch(
                f"{self.webhook_url}/messages/{message_id}",
                json={"embeds": [embed.to_payload()]},
                timeout=self.timeout,
            )
            response.raise_for_status()
        except httpx.HTTPError as e:
            logger.error(f"Failed to edit status message {message_id}: {e}")

    async def send_text(self, text: str) -> None:
        try:
            response = await self.http_client.post(
                self.webhook_url,
                json={"content": text[:2000]},
                timeout=self.timeout,
            )
            response.raise_for_status()
        except httpx.HTTPError as e:
            logger.error(f"Failed to send notice: {e}")
