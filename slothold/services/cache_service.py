"""
Redis caching service for slot listings.

CACHING STRATEGY
================

What we cache:
  - Slot listings per event and booking session (JSON-serialized)
  - Cache key pattern: "slots:list:event={event_id}&session={session_id}"

Why per session:
  - The backend subtracts every *other* session's holds from available
    counts, so two sessions legitimately see different numbers.

Invalidation strategy:
  - On confirm or cancel: delete every listing of that event (all sessions)
  - TTL-based expiry as safety net (15 seconds)

A cached listing is only ever a hint. Holds are capacity-checked by the
server, so a stale count costs the user a conflict message, never an
overbooking. Redis failures fail open: the listing is fetched live.
"""

import json
from typing import Optional

from redis.exceptions import RedisError

from slothold.core.config import get_settings
from slothold.core.logging import get_logger
from slothold.core.metrics import record_cache_operation
from slothold.infrastructure.redis_client import get_redis

logger = get_logger(__name__)


def _make_slot_list_key(event_id: str, session_id: str) -> str:
    return f"slots:list:event={event_id}&session={session_id}"


async def get_cached_slots(event_id: str, session_id: str) -> Optional[list[dict]]:
    """Retrieve a cached slot listing."""
    client = await get_redis()
    if not client:
        return None

    key = _make_slot_list_key(event_id, session_id)
    try:
        data = await client.get(key)
    except RedisError as e:
        logger.error("cache_get_error", key=key, error=str(e))
        return None

    record_cache_operation("get", hit=bool(data))
    if data:
        logger.debug("cache_hit", key=key)
        return json.loads(data)
    logger.debug("cache_miss", key=key)
    return None


async def set_cached_slots(event_id: str, session_id: str, slots: list[dict]) -> None:
    """Cache a slot listing with TTL."""
    client = await get_redis()
    if not client:
        return

    settings = get_settings()
    key = _make_slot_list_key(event_id, session_id)
    try:
        await client.setex(key, settings.REDIS_CACHE_TTL, json.dumps(slots, default=str))
        logger.debug("cache_set", key=key, ttl=settings.REDIS_CACHE_TTL)
    except RedisError as e:
        logger.error("cache_set_error", key=key, error=str(e))


async def invalidate_slot_cache(event_id: str) -> None:
    """
    Invalidate every cached listing of one event.
    Uses SCAN to find and delete all keys matching the prefix.
    """
    client = await get_redis()
    if not client:
        return

    try:
        deleted = 0
        async for key in client.scan_iter(match=f"slots:list:event={event_id}&*", count=100):
            await client.delete(key)
            deleted += 1
        logger.info("cache_invalidated", event_id=event_id, keys_deleted=deleted)
    except RedisError as e:
        logger.error("cache_invalidation_error", event_id=event_id, error=str(e))


async def get_cache_stats() -> dict:
    """Get Redis cache statistics for monitoring."""
    client = await get_redis()
    if not client:
        return {"status": "disabled"}

    try:
        info = await client.info("stats")
    except RedisError as e:
        return {"status": "error", "error": str(e)}

    hits = info.get("keyspace_hits", 0)
    misses = info.get("keyspace_misses", 0)
    return {
        "status": "connected",
        "hits": hits,
        "misses": misses,
        "hit_rate": round(hits / max(hits + misses, 1) * 100, 2),
    }
