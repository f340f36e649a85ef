"""
Redis caching service for the platform fee settings snapshot.

CACHING STRATEGY
================

What we cache:
  - The active PlatformSettings snapshot (three fee rates), JSON-serialized
  - Cache key: "platform-settings:{code}"

Why:
  - Every priced checkout reads the fee configuration once
  - The row changes only when an operator edits fees in the admin tool

Invalidation strategy:
  - TTL-based expiry only (REDIS_CACHE_TTL); a fee edit is visible to
    checkout within one TTL

Failure policy:
  - Redis errors are logged and treated as a miss; the database is always
    authoritative
"""

import json
from typing import Optional

from app.core.config import get_settings
from app.core.logging import get_logger
from app.infrastructure.redis_client import get_redis

logger = get_logger(__name__)


def _make_settings_key(code: str) -> str:
    return f"platform-settings:{code}"


async def get_cached_platform_settings(code: str) -> Optional[dict]:
    """Retrieve the cached fee-rate mapping for a settings code."""
    client = await get_redis()
    if not client:
        return None

    key = _make_settings_key(code)
    try:
        data = await client.get(key)
        if data:
            logger.debug("cache_hit", key=key)
            return json.loads(data)
        logger.debug("cache_miss", key=key)
    except Exception as e:
        logger.error("cache_get_error", key=key, error=str(e))

    return None


async def set_cached_platform_settings(code: str, data: dict) -> None:
    """Cache the fee-rate mapping with TTL."""
    client = await get_redis()
    if not client:
        return

    settings = get_settings()
    key = _make_settings_key(code)
    try:
        await client.setex(key, settings.REDIS_CACHE_TTL, json.dumps(data))
        logger.debug("cache_set", key=key, ttl=settings.REDIS_CACHE_TTL)
    except Exception as e:
        logger.error("cache_set_error", key=key, error=str(e))


async def get_cache_stats() -> dict:
    """Get Redis cache statistics for monitoring."""
    client = await get_redis()
    if not client:
        return {"status": "disabled"}

    try:
        info = await client.info("stats")
        hits = info.get("keyspace_hits", 0)
        misses = info.get("keyspace_misses", 0)
        return {
            "status": "connected",
            "hits": hits,
            "misses": misses,
            "hit_rate": round(hits / max(hits + misses, 1) * 100, 2),
        }
    except Exception as e:
        return {"status": "error", "error": str(e)}
