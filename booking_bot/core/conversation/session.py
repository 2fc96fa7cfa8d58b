"""
Conversation sessions.

A session carries the conversation state and the details gathered so far
between turns. Sessions are ephemeral: Redis with a TTL, or an in-process
dict when Redis is unavailable.

Key pattern: bookingbot:v1:conversation:{conversation_key}
"""

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable, Optional

from redis.asyncio import Redis
from redis.exceptions import RedisError

from booking_bot.config import settings
from booking_bot.core.extraction.types import ExtractionResult
from booking_bot.infra.redis import APP_PREFIX, get_redis
from .state import ConversationState, InvalidTransition, can_transition

logger = logging.getLogger(__name__)

SESSION_PREFIX = f"{APP_PREFIX}conversation:"


def _utcnow() -> datetime:
    """Get current UTC time as timezone-aware datetime."""
    return datetime.now(timezone.utc)


def conversation_key(professional_id: str, contact: str) -> str:
    """One conversation per professional and counterpart contact."""
    return f"{professional_id}:{contact}"


@dataclass
class ConversationSession:
    """State of one conversation between turns."""

    key: str
    professional_id: str
    counterpart_id: Optional[str] = None
    state: ConversationState = ConversationState.AWAITING_DETAILS
    draft: ExtractionResult = field(default_factory=ExtractionResult)
    created_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime = field(default_factory=_utcnow)

    def transition(self, new_state: ConversationState) -> None:
        """Move to new_state.

        Raises:
            InvalidTransition: if the state machine forbids the move
        """
        if not can_transition(self.state, new_state):
            raise InvalidTransition(self.state, new_state)
        logger.debug(f"Conversation {self.key}: {self.state.value} -> {new_state.value}")
        self.state = new_state

    def reset_draft(self) -> None:
        self.draft = ExtractionResult()

    def to_json(self) -> str:
        return json.dumps({
            "key": self.key,
            "professional_id": self.professional_id,
            "counterpart_id": self.counterpart_id,
            "state": self.state.value,
            "draft": self.draft.to_dict(),
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        })

    @classmethod
    def from_json(cls, raw: str) -> "ConversationSession":
        data = json.loads(raw)
        return cls(
            key=data["key"],
            professional_id=data["professional_id"],
            counterpart_id=data.get("counterpart_id"),
            state=ConversationState(data["state"]),
            draft=ExtractionResult.from_dict(data.get("draft", {})),
            created_at=datetime.fromisoformat(data["created_at"]),
            updated_at=datetime.fromisoformat(data["updated_at"]),
        )


class ConversationSessionStore:
    """
    Redis-based session store.

    Gracefully handles Redis unavailability with in-memory fallback.
    Fallback entries expire after the same TTL as Redis keys.
    """

    def __init__(
        self,
        ttl_seconds: Optional[int] = None,
        redis_provider: Callable[[], Awaitable[Optional[Redis]]] = get_redis,
        clock: Callable[[], datetime] = _utcnow,
    ):
        """Initialize session store.

        Args:
            ttl_seconds: Session TTL (defaults to settings, 30 minutes)
            redis_provider: Coroutine returning a Redis client or None
            clock: Source of the current UTC time for fallback expiry
        """
        self._ttl = ttl_seconds if ttl_seconds is not None else settings.conversation_ttl
        self._redis_provider = redis_provider
        self._clock = clock
        self._in_memory_fallback: dict[str, tuple[ConversationSession, datetime]] = {}

    def _fallback_get(self, key: str) -> Optional[ConversationSession]:
        entry = self._in_memory_fallback.get(key)
        if entry is None:
            return None
        session, expires_at = entry
        if self._clock() > expires_at:
            del self._in_memory_fallback[key]
            return None
        return session

    def purge_expired(self) -> int:
        """Drop expired in-memory sessions. Returns the number removed."""
        now = self._clock()
        expired = [k for k, (_, expires_at) in self._in_memory_fallback.items() if now > expires_at]
        for key in expired:
            del self._in_memory_fallback[key]
        if expired:
            logger.debug(f"Purged {len(expired)} expired sessions")
        return len(expired)

    def __len__(self) -> int:
        return len(self._in_memory_fallback)

    def _key(self, key: str) -> str:
        """Generate Redis key."""
        return f"{SESSION_PREFIX}{key}"

    async def get(self, key: str) -> Optional[ConversationSession]:
        """
        Get session by conversation key.

        Returns:
            ConversationSession or None if not found
        """
        redis = await self._redis_provider()

        if redis is None:
            return self._fallback_get(key)

        try:
            data = await redis.get(self._key(key))
        except RedisError as e:
            logger.error(f"Failed to read session {key}: {e} - using in-memory")
            return self._fallback_get(key)

        if not data:
            return self._fallback_get(key)

        try:
            return ConversationSession.from_json(data)
        except (KeyError, ValueError) as e:
            logger.warning(f"Discarding malformed session {key}: {e}")
            await self.delete(key)
            return None

    async def save(self, session: ConversationSession) -> None:
        """Save session, refreshing its TTL."""
        session.updated_at = _utcnow()

        redis = await self._redis_provider()

        if redis is not None:
            try:
                await redis.setex(self._key(session.key), self._ttl, session.to_json())
                self._in_memory_fallback.pop(session.key, None)
                logger.debug(f"Session saved: {session.key}")
                return
            except RedisError as e:
                logger.error(f"Failed to save session {session.key}: {e} - using in-memory")
        else:
            logger.warning(f"Redis unavailable, using in-memory fallback for session {session.key}")

        self._in_memory_fallback[session.key] = (session, self._clock() + timedelta(seconds=self._ttl))

    async def delete(self, key: str) -> None:
        """Delete a session."""
        self._in_memory_fallback.pop(key, None)

        redis = await self._redis_provider()
        if redis is None:
            return
        try:
            await redis.delete(self._key(key))
        except RedisError as e:
            logger.error(f"Failed to delete session {key}: {e}")
