from __future__ import annotations

import logging
from typing import Optional

import redis
from redis import Redis

from formdesk.core.config import settings

logger = logging.getLogger("formdesk.redis")

_client: Optional[Redis] = None


def get_redis() -> Optional[Redis]:
    """Return a singleton Redis client (or None if disabled / not reachable)."""
    global _client
    if _client is not None:
        return _client
    if not (settings.REDIS_URL or "").strip():
        return None
    try:
        _client = redis.Redis.from_url(settings.REDIS_URL, decode_responses=True, socket_timeout=1.0)
        _client.ping()
        return _client
    except redis.RedisError as exc:
        logger.info("Redis unavailable: %s", exc)
        _client = None
        return None
