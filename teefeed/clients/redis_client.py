"""
Redis client wrapper.

Responsibilities:
  • Change channel — PUBLISH on feed:changes after every post create/delete
                     and like-count update; FeedSubscription listens on it.
  • Feed cache     — STRING (JSON) keyed by feed:global:last holding the
                     last successfully fetched global feed, served when the
                     post store is unavailable.
"""
import json
import logging
from typing import Optional

import redis.asyncio as aioredis

from teefeed.config import settings

logger = logging.getLogger(__name__)

_redis: Optional[aioredis.Redis] = None


async def init_redis() -> None:
    global _redis
    _redis = aioredis.Redis(
        host=settings.redis_host,
        port=settings.redis_port,
        decode_responses=True,
    )
    await _redis.ping()
    logger.info("Redis connected at %s:%s", settings.redis_host, settings.redis_port)


async def close_redis() -> None:
    global _redis
    if _redis is not None:
        await _redis.aclose()
        _redis = None


def set_redis(client: Optional[aioredis.Redis]) -> None:
    """Install an already-built client (worker processes, tests)."""
    global _redis
    _redis = client


def get_redis() -> aioredis.Redis:
    if _redis is None:
        raise RuntimeError("Redis not initialised — call init_redis() at startup")
    return _redis


# ─────────────────────── Change channel (PUB/SUB) ─────────────────────────

async def publish_change(event: str, author_id: str, post_id: str) -> None:
    """
    Announce a change to the post collection.

    Payload: { event, author_id, post_id }. Subscribers do not apply it
    incrementally; any message triggers a full feed re-fetch.
    """
    r = get_redis()
    payload = {"event": event, "author_id": author_id, "post_id": post_id}
    await r.publish(settings.feed_changes_channel, json.dumps(payload))
    logger.debug("Published %s for post_id=%s", event, post_id)


# ─────────────────────── Last-known-good feed ─────────────────────────────

async def set_cached_feed(posts: list[dict]) -> None:
    r = get_redis()
    await r.set(settings.feed_cache_key, json.dumps(posts), ex=settings.feed_cache_ttl)


async def get_cached_feed() -> list[dict] | None:
    r = get_redis()
    raw = await r.get(settings.feed_cache_key)
    if raw:
        return json.loads(raw)
    return None
