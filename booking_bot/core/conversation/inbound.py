"""
Inbound message normalization.

Channels deliver messages in their own shapes; the orchestrator only sees
`InboundMessage`. Contact addresses are reduced to digits so that
"whatsapp:+5491122334455" and "5491122334455" are the same person.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional

logger = logging.getLogger(__name__)

CHANNEL_PREFIXES = ("whatsapp:", "tel:", "sms:")


def _utcnow() -> datetime:
    """Get current UTC time as timezone-aware datetime."""
    return datetime.now(timezone.utc)


def normalize_contact(raw: Optional[str]) -> str:
    """Strip channel prefixes and keep only digits."""
    if not raw:
        return ""
    value = raw.strip()
    for prefix in CHANNEL_PREFIXES:
        if value.lower().startswith(prefix):
            value = value[len(prefix):]
    return "".join(c for c in value if c.isdigit())


@dataclass(frozen=True)
class InboundMessage:
    """A channel-independent inbound message.

    `text` is None for non-text content (images, audio, reactions).
    """

    from_id: str
    to_id: str
    text: Optional[str]
    timestamp: datetime = field(default_factory=_utcnow)
    contact_name: Optional[str] = None

    @property
    def has_text(self) -> bool:
        return bool(self.text and self.text.strip())


class InboundNormalizer(ABC):
    """Turns a channel payload into an InboundMessage."""

    @abstractmethod
    def normalize(self, payload: dict[str, Any]) -> Optional[InboundMessage]:
        """Return None when the payload is not a message at all."""
        pass


class JsonInboundNormalizer(InboundNormalizer):
    """
    Generic JSON shape:

        {"from": "...", "to": "...", "type": "text", "text": "...",
         "timestamp": "2026-10-19T12:00:00Z", "name": "Ana"}

    `type` defaults to "text"; any other type yields a message without text.
    """

    def normalize(self, payload: dict[str, Any]) -> Optional[InboundMessage]:
        from_id = normalize_contact(payload.get("from"))
        to_id = normalize_contact(payload.get("to"))
        if not from_id or not to_id:
            logger.warning("Inbound payload without sender or recipient, ignoring")
            return None

        kind = payload.get("type") or "text"
        text = payload.get("text") if kind == "text" else None
        if text is not None and not isinstance(text, str):
            text = None

        return InboundMessage(
            from_id=from_id,
            to_id=to_id,
            text=text,
            timestamp=self._parse_timestamp(payload.get("timestamp")),
            contact_name=payload.get("name") or None,
        )

    def _parse_timestamp(self, raw: Any) -> datetime:
        if isinstance(raw, datetime):
            return raw if raw.tzinfo else raw.replace(tzinfo=timezone.utc)
        if isinstance(raw, (int, float)):
            return datetime.fromtimestamp(raw, tz=timezone.utc)
        if isinstance(raw, str) and raw:
            try:
                parsed = datetime.fromisoformat(raw.replace("Z", "+00:00"))
            except ValueError:
                logger.debug(f"Unparseable timestamp '{raw}', using now")
                return _utcnow()
            return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
        return _utcnow()
