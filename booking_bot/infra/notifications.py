"""
Outbound message delivery.

Senders deliver the orchestrator's reply back to the counterpart's channel.
The webhook sender POSTs JSON to a configured URL; the logging sender is
used when no webhook is configured (local development, tests).
"""

import logging
from abc import ABC, abstractmethod
from collections import deque
from typing import Optional

import httpx

from booking_bot.config import settings

logger = logging.getLogger(__name__)


class Sender(ABC):
    """Outbound channel."""

    @abstractmethod
    async def send(self, to: str, text: str) -> bool:
        """Send a text message.

        Args:
            to: Recipient contact address
            text: Message body

        Returns:
            True if sent successfully
        """
        pass

    async def close(self) -> None:
        """Release resources."""
        return None


class LoggingSender(Sender):
    """Writes replies to the log instead of delivering them.

    Only the most recent `history` replies are kept in `sent`.
    """

    def __init__(self, history: int = 100):
        self.sent: deque[tuple[str, str]] = deque(maxlen=history)

    async def send(self, to: str, text: str) -> bool:
        self.sent.append((to, text))
        logger.info(f"Reply to {to}: {text}")
        return True


class WebhookSender(Sender):
    """POSTs `{"to": ..., "text": ...}` to an HTTP endpoint."""

    def __init__(
        self,
        url: Optional[str] = None,
        token: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize sender.

        Args:
            url: Webhook URL (defaults to settings)
            token: Bearer token (defaults to settings)
            timeout: Request timeout in seconds (defaults to settings)
            transport: httpx transport override (for testing)
        """
        self.url = url or settings.outbound_webhook_url
        if not self.url:
            raise ValueError("Outbound webhook URL is required")

        token = token or settings.outbound_webhook_token
        headers = {"Authorization": f"Bearer {token}"} if token else {}

        self._client = httpx.AsyncClient(
            timeout=timeout if timeout is not None else settings.outbound_timeout,
            headers=headers,
            transport=transport,
        )

    async def send(self, to: str, text: str) -> bool:
        try:
            response = await self._client.post(self.url, json={"to": to, "text": text})
        except httpx.HTTPError as e:
            logger.error(f"Outbound delivery to {to} failed: {e}")
            return False

        if response.status_code >= 400:
            logger.error(
                f"Outbound delivery to {to} rejected: HTTP {response.status_code} {response.text[:200]}"
            )
            return False

        logger.debug(f"Delivered reply to {to}")
        return True

    async def close(self) -> None:
        await self._client.aclose()


def build_sender() -> Sender:
    """Create the configured sender."""
    if settings.outbound_webhook_url:
        return WebhookSender()
    logger.info("No outbound webhook configured, replies will only be logged")
    return LoggingSender()
