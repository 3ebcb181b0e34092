"""
Redis-backed advisory ledger for processor webhook deliveries.

WHAT WE STORE
=============

  One key per fully processed processor event: "webhook:event:{event_id}".
  Set only after the event's critical step committed.

Why:
  Processors deliver at-least-once and retry aggressively. Most replays hit
  the same event id minutes apart; answering them from Redis (~1ms) skips
  the signature-verified-but-redundant trip through the database.

Why it is advisory:
  The database stays authoritative. Every write in the reconciliation
  pipeline is already an insert-on-conflict or a conditional update keyed by
  the processor's ids, so a missing or evicted key only costs a redundant
  (and harmless) pass. On any Redis failure we fail open: the event is
  processed as if it were new.
"""

from typing import Optional

import redis.asyncio as redis
from app.core.config import get_settings
from app.core.logging import get_logger
from app.core.metrics import redis_connection_errors

logger = get_logger(__name__)
settings = get_settings()

_redis_client: Optional[redis.Redis] = None

EVENT_KEY_PREFIX = "webhook:event:"


async def get_redis() -> Optional[redis.Redis]:
    """Get or create Redis connection. Returns None if Redis is disabled."""
    global _redis_client

    if not settings.REDIS_ENABLED:
        return None

    if _redis_client is None:
        try:
            _redis_client = redis.from_url(
                settings.REDIS_URL,
                encoding="utf-8",
                decode_responses=True,
                socket_connect_timeout=5,
                socket_timeout=5,
                retry_on_timeout=True,
            )
            await _redis_client.ping()
            logger.info("redis_connected", url=settings.REDIS_URL)
        except Exception as e:
            redis_connection_errors.inc()
            logger.error("redis_connection_failed", error=str(e))
            _redis_client = None
            return None

    return _redis_client


async def close_redis() -> None:
    """Close Redis connection on shutdown."""
    global _redis_client
    if _redis_client:
        await _redis_client.aclose()
        _redis_client = None


def _event_key(event_id: str) -> str:
    return f"{EVENT_KEY_PREFIX}{event_id}"


async def was_event_processed(event_id: Optional[str]) -> bool:
    if not event_id:
        return False
    client = await get_redis()
    if not client:
        return False

    try:
        return bool(await client.exists(_event_key(event_id)))
    except Exception as e:
        redis_connection_errors.inc()
        logger.error("event_ledger_read_error", event_id=event_id, error=str(e))
        return False


async def mark_event_processed(event_id: Optional[str], event_type: str) -> None:
    if not event_id:
        return
    client = await get_redis()
    if not client:
        return

    try:
        await client.setex(_event_key(event_id), settings.REDIS_EVENT_TTL, event_type)
        logger.debug("event_ledger_marked", event_id=event_id, ttl=settings.REDIS_EVENT_TTL)
    except Exception as e:
        redis_connection_errors.inc()
        logger.error("event_ledger_write_error", event_id=event_id, error=str(e))


async def get_cache_stats() -> dict:
    """Redis statistics for the health endpoint."""
    client = await get_redis()
    if not client:
        return {"status": "disabled"}

    try:
        info = await client.info("stats")
        return {
            "status": "connected",
            "hits": info.get("keyspace_hits", 0),
            "misses": info.get("keyspace_misses", 0),
            "keys": await client.dbsize(),
        }
    except Exception as e:
        return {"status": "error", "error": str(e)}
