"""Redis client for idempotency keys and the outbound notification queue.

Usage:
    from trade_settlement.infrastructure.redis_client import get_redis, close_redis

    redis = get_redis()
    await redis.set("key", "value", ex=3600)
"""

from __future__ import annotations

import json

import redis.asyncio as aioredis

from trade_settlement.config import get_settings
from trade_settlement.logging_config import get_logger

logger = get_logger(__name__)

_redis_client: aioredis.Redis | None = None


async def init_redis() -> aioredis.Redis:
    """Initialize and return the Redis client. Called during app startup."""
    global _redis_client
    settings = get_settings()
    _redis_client = aioredis.from_url(
        settings.redis_url,
        decode_responses=True,
    )
    await _redis_client.ping()
    logger.info("redis.connected", url=settings.redis_url)
    return _redis_client


def get_redis() -> aioredis.Redis:
    """Return the Redis client singleton. Must call init_redis() first."""
    if _redis_client is None:
        raise RuntimeError("Redis not initialized. Call init_redis() first.")
    return _redis_client


def redis_available() -> bool:
    return _redis_client is not None


async def close_redis() -> None:
    """Close the Redis connection. Called during app shutdown."""
    global _redis_client
    if _redis_client is not None:
        await _redis_client.aclose()
        logger.info("redis.disconnected")
        _redis_client = None


# --- Idempotency Helpers ---


async def claim_idempotency_key(key: str, value: str = "1") -> bool:
    """Atomically claim an idempotency key.

    Returns True if the key was new (caller may proceed), False if it was
    already claimed by an earlier request.
    """
    settings = get_settings()
    redis = get_redis()
    claimed = await redis.set(
        f"idempotency:{key}",
        value,
        ex=settings.redis_idempotency_ttl_seconds,
        nx=True,
    )
    return bool(claimed)


async def release_idempotency_key(key: str) -> None:
    """Forget a claimed key so a failed request can be retried."""
    redis = get_redis()
    await redis.delete(f"idempotency:{key}")


# --- Notification Queue ---


async def enqueue_notification(list_key: str, message: dict) -> None:
    redis = get_redis()
    await redis.rpush(list_key, json.dumps(message, default=str))
