"""
Redis Connection Management

Shared Redis connection for conversation sessions and pending offers.

Callers never see connection errors: `get_redis()` returns None while Redis
is down and the stores fall back to process memory. After a failed connect
the client waits `RECONNECT_COOLDOWN` seconds before trying again, so a
dead Redis costs one timeout per cooldown instead of one per message.
"""

import logging
import time
from typing import Optional

import redis.asyncio as redis
from redis.asyncio import Redis
from redis.asyncio.retry import Retry
from redis.backoff import ExponentialBackoff
from redis.exceptions import RedisError

from booking_bot.config import settings

logger = logging.getLogger(__name__)

# App prefix for namespacing (allows multiple apps/versions on same Redis)
APP_PREFIX = "bookingbot:v1:"

RECONNECT_COOLDOWN = 30.0


class RedisClient:
    """Process-wide Redis connection with a reconnect cooldown."""

    _client: Optional[Redis] = None
    _retry_at: float = 0.0

    @classmethod
    async def get_client(cls) -> Optional[Redis]:
        """
        Get or create the Redis client.

        Returns:
            Redis client, or None if Redis is unavailable
        """
        if cls._client is not None:
            return cls._client

        if time.monotonic() < cls._retry_at:
            return None

        client = redis.from_url(
            settings.redis_url,
            encoding="utf-8",
            decode_responses=True,
            socket_connect_timeout=2.0,
            socket_timeout=2.0,
            retry_on_timeout=True,
            retry=Retry(ExponentialBackoff(cap=1.0), retries=2),
        )
        try:
            await client.ping()
        except (RedisError, OSError) as e:
            cls._retry_at = time.monotonic() + RECONNECT_COOLDOWN
            logger.error(f"Failed to connect to Redis, retrying in {RECONNECT_COOLDOWN:.0f}s: {e}")
            await client.aclose()
            return None

        cls._client = client
        cls._retry_at = 0.0
        logger.info("Redis connection established")
        return cls._client

    @classmethod
    async def close(cls) -> None:
        """Close Redis connection."""
        client, cls._client = cls._client, None
        if client is None:
            return
        try:
            await client.aclose()
        except RedisError as e:
            logger.error(f"Error closing Redis connection: {e}")


async def get_redis() -> Optional[Redis]:
    """Provide the shared Redis client, or None if Redis is unavailable."""
    return await RedisClient.get_client()


async def check_redis_health() -> bool:
    """
    Check Redis connectivity for health checks.

    Returns:
        True if Redis is accessible and responding, False otherwise
    """
    client = await get_redis()
    if client is None:
        return False
    try:
        await client.ping()
        return True
    except RedisError as e:
        logger.error(f"Redis health check failed: {e}")
        return False
