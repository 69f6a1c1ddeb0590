"""Redis client for idempotent replay of mutating requests.

A client that sends `Idempotency-Key` with a POST gets the first response
replayed for every repeat within the TTL. Redis is optional: when it was
never initialized or is unreachable the cache is skipped and requests run
normally.

Usage:
    from secure_swap.infrastructure.redis_client import get_cached_response, cache_response

    cached = await get_cached_response(scope, key)
    if cached is None:
        ...
        await cache_response(scope, key, 200, body)
"""

from __future__ import annotations

import json
from typing import Any

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from secure_swap.config import get_settings
from secure_swap.logging_config import get_logger

logger = get_logger(__name__)

_redis_client: aioredis.Redis | None = None


async def init_redis() -> aioredis.Redis:
    """Initialize and return the Redis client. Called during app startup."""
    global _redis_client
    settings = get_settings()
    client = aioredis.from_url(
        settings.redis_url,
        decode_responses=True,
    )
    # Verify connectivity
    await client.ping()
    _redis_client = client
    logger.info("redis.connected", url=settings.redis_url)
    return _redis_client


def get_redis() -> aioredis.Redis:
    """Return the Redis client singleton. Must call init_redis() first."""
    if _redis_client is None:
        raise RuntimeError("Redis not initialized. Call init_redis() first.")
    return _redis_client


def set_redis(client: aioredis.Redis | None) -> None:
    """Install a client directly (tests use an AsyncMock)."""
    global _redis_client
    _redis_client = client


async def close_redis() -> None:
    """Close the Redis connection. Called during app shutdown."""
    global _redis_client
    if _redis_client is not None:
        await _redis_client.aclose()
        logger.info("redis.disconnected")
        _redis_client = None


# --- Idempotency Helpers ---


def _key(scope: str, key: str) -> str:
    return f"idempotency:{scope}:{key}"


async def get_cached_response(scope: str, key: str) -> dict[str, Any] | None:
    """Return the stored {"status_code", "body"} for a key, or None."""
    if _redis_client is None:
        return None
    try:
        raw = await _redis_client.get(_key(scope, key))
    except RedisError as exc:
        logger.warning("idempotency.lookup_failed", error=str(exc))
        return None
    if not raw:
        return None
    return json.loads(raw)


async def cache_response(scope: str, key: str, status_code: int, body: dict[str, Any]) -> None:
    """Remember a response for replay. Only the first write for a key wins."""
    if _redis_client is None:
        return
    settings = get_settings()
    payload = json.dumps({"status_code": status_code, "body": body})
    try:
        await _redis_client.set(
            _key(scope, key),
            payload,
            ex=settings.redis_idempotency_ttl_seconds,
            nx=True,
        )
    except RedisError as exc:
        logger.warning("idempotency.store_failed", error=str(exc))
