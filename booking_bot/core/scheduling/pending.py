"""
Pending selection store.

Holds the slot list most recently offered to each conversation until the
counterpart picks one or the offer expires.

Key pattern (Redis): bookingbot:v1:pending:{conversation_key}
"""

import asyncio
import json
import logging
import threading
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable, Optional

from redis.asyncio import Redis
from redis.exceptions import RedisError

from booking_bot.config import settings
from booking_bot.core.scheduling.types import Slot
from booking_bot.infra.redis import APP_PREFIX, get_redis

logger = logging.getLogger(__name__)

PENDING_PREFIX = f"{APP_PREFIX}pending:"


def _utcnow() -> datetime:
    """Get current UTC time as timezone-aware datetime."""
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class PendingOffer:
    """Slots offered to one conversation."""

    key: str
    professional_id: uuid.UUID
    slots: tuple[Slot, ...]
    expires_at: datetime

    def is_valid(self, now: datetime) -> bool:
        return now <= self.expires_at

    def pick(self, number: int) -> Optional[Slot]:
        """Return the slot for a 1-based option number."""
        if 1 <= number <= len(self.slots):
            return self.slots[number - 1]
        return None

    def to_json(self) -> str:
        return json.dumps({
            "key": self.key,
            "professional_id": str(self.professional_id),
            "slots": [s.to_dict() for s in self.slots],
            "expires_at": self.expires_at.isoformat(),
        })

    @classmethod
    def from_json(cls, raw: str) -> "PendingOffer":
        data = json.loads(raw)
        return cls(
            key=data["key"],
            professional_id=uuid.UUID(data["professional_id"]),
            slots=tuple(Slot.from_dict(s) for s in data["slots"]),
            expires_at=datetime.fromisoformat(data["expires_at"]),
        )


class PendingSelectionStore(ABC):
    """Keyed offer cache with TTL eviction. Per-key last write wins."""

    @abstractmethod
    async def set(self, key: str, professional_id: uuid.UUID, slots: list[Slot]) -> PendingOffer:
        """Replace the offer for key, expiring TTL seconds from now."""
        pass

    @abstractmethod
    async def try_get(self, key: str) -> Optional[PendingOffer]:
        """Return the offer if still valid; evict and return None otherwise."""
        pass

    @abstractmethod
    async def clear(self, key: str) -> None:
        """Remove the offer unconditionally."""
        pass

    def purge_expired(self) -> int:
        """Drop expired offers held in process. Returns the number removed."""
        return 0


class InMemoryPendingSelectionStore(PendingSelectionStore):
    """Process-wide offer cache.

    A threading lock guards the dict so the store can be shared between
    the event loop and worker threads.
    """

    def __init__(
        self,
        ttl_seconds: Optional[int] = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self._ttl = timedelta(seconds=ttl_seconds if ttl_seconds is not None else settings.pending_offer_ttl)
        self._clock = clock
        self._offers: dict[str, PendingOffer] = {}
        self._lock = threading.Lock()

    async def set(self, key: str, professional_id: uuid.UUID, slots: list[Slot]) -> PendingOffer:
        offer = PendingOffer(
            key=key,
            professional_id=professional_id,
            slots=tuple(slots),
            expires_at=self._clock() + self._ttl,
        )
        with self._lock:
            self._offers[key] = offer
        logger.debug(f"Offer stored for {key}: {len(slots)} slots")
        return offer

    async def try_get(self, key: str) -> Optional[PendingOffer]:
        now = self._clock()
        with self._lock:
            offer = self._offers.get(key)
            if offer is None:
                return None
            if offer.is_valid(now):
                return offer
            del self._offers[key]
        logger.debug(f"Offer for {key} expired at {offer.expires_at.isoformat()}")
        return None

    async def clear(self, key: str) -> None:
        with self._lock:
            self._offers.pop(key, None)

    def purge_expired(self) -> int:
        """Drop every expired offer. Returns the number removed."""
        now = self._clock()
        with self._lock:
            expired = [k for k, o in self._offers.items() if not o.is_valid(now)]
            for key in expired:
                del self._offers[key]
        if expired:
            logger.debug(f"Purged {len(expired)} expired offers")
        return len(expired)

    def __len__(self) -> int:
        return len(self._offers)


class RedisPendingSelectionStore(PendingSelectionStore):
    """
    Redis-backed offer cache shared between processes.

    Redis TTL removes stale keys; expiry is still checked on read so the
    TTL window is exact. Falls back to an in-process store when Redis is
    unavailable.
    """

    def __init__(
        self,
        ttl_seconds: Optional[int] = None,
        clock: Callable[[], datetime] = _utcnow,
        redis_provider: Callable[[], Awaitable[Optional[Redis]]] = get_redis,
    ):
        self._ttl_seconds = ttl_seconds if ttl_seconds is not None else settings.pending_offer_ttl
        self._clock = clock
        self._redis_provider = redis_provider
        self._fallback = InMemoryPendingSelectionStore(self._ttl_seconds, clock)

    def _key(self, key: str) -> str:
        return f"{PENDING_PREFIX}{key}"

    async def set(self, key: str, professional_id: uuid.UUID, slots: list[Slot]) -> PendingOffer:
        redis = await self._redis_provider()
        if redis is None:
            logger.warning(f"Redis unavailable, using in-memory offer for {key}")
            return await self._fallback.set(key, professional_id, slots)

        offer = PendingOffer(
            key=key,
            professional_id=professional_id,
            slots=tuple(slots),
            expires_at=self._clock() + timedelta(seconds=self._ttl_seconds),
        )
        try:
            await redis.setex(self._key(key), self._ttl_seconds, offer.to_json())
        except RedisError as e:
            logger.error(f"Failed to store offer for {key}: {e} - using in-memory")
            return await self._fallback.set(key, professional_id, slots)
        return offer

    async def try_get(self, key: str) -> Optional[PendingOffer]:
        redis = await self._redis_provider()
        if redis is None:
            return await self._fallback.try_get(key)

        try:
            raw = await redis.get(self._key(key))
        except RedisError as e:
            logger.error(f"Failed to read offer for {key}: {e}")
            return await self._fallback.try_get(key)

        if raw is None:
            return await self._fallback.try_get(key)

        try:
            offer = PendingOffer.from_json(raw)
        except (KeyError, ValueError) as e:
            logger.warning(f"Discarding malformed offer for {key}: {e}")
            await self.clear(key)
            return None

        if offer.is_valid(self._clock()):
            return offer

        await self.clear(key)
        return None

    async def clear(self, key: str) -> None:
        await self._fallback.clear(key)

        redis = await self._redis_provider()
        if redis is None:
            return
        try:
            await redis.delete(self._key(key))
        except RedisError as e:
            logger.error(f"Failed to clear offer for {key}: {e}")

    def purge_expired(self) -> int:
        return self._fallback.purge_expired()


def build_pending_store(backend: Optional[str] = None) -> PendingSelectionStore:
    """Create the configured pending selection store."""
    backend = backend or settings.pending_store_backend
    if backend == "redis":
        return RedisPendingSelectionStore()
    return InMemoryPendingSelectionStore()


async def run_offer_sweeper(
    store: PendingSelectionStore,
    interval_seconds: Optional[int] = None,
    sessions=None,
) -> None:
    """Periodically purge expired in-process offers until cancelled.

    `sessions` is an optional session store whose in-memory entries are
    purged on the same schedule.
    """
    interval = interval_seconds if interval_seconds is not None else settings.pending_sweep_interval
    logger.info(f"Offer sweeper started (every {interval}s)")
    while True:
        await asyncio.sleep(interval)
        removed = store.purge_expired()
        if removed:
            logger.info(f"Offer sweeper removed {removed} expired offers")
        if sessions is not None:
            expired = sessions.purge_expired()
            if expired:
                logger.info(f"Offer sweeper removed {expired} expired sessions")
