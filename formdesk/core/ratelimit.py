from __future__ import annotations

import logging

from fastapi import Request
from redis import RedisError

from formdesk.core.config import settings
from formdesk.core.errors import RateLimitedError
from formdesk.core.redis import get_redis

logger = logging.getLogger("formdesk.ratelimit")


def client_ip(request: Request) -> str:
    """Address used as the rate limit key.

    X-Forwarded-For is only honoured behind TRUSTED_PROXY_COUNT proxies, and then
    the entry that many hops from the right is taken; anything left of it is
    client supplied.
    """
    hops = settings.TRUSTED_PROXY_COUNT
    if hops > 0:
        parts = [p.strip() for p in (request.headers.get("x-forwarded-for") or "").split(",") if p.strip()]
        if len(parts) >= hops:
            return parts[-hops]
    return request.client.host if request.client else "unknown"


class FailedAttemptLimiter:
    """Fixed-window counter of failed attempts per client ip.

    Successful requests are never counted. Without Redis there is no limit.
    """

    def __init__(self, scope: str, limit: int | None = None, window_seconds: int | None = None):
        self.scope = scope
        self.limit = limit if limit is not None else settings.AUTH_RATE_LIMIT
        self.window_seconds = window_seconds if window_seconds is not None else settings.AUTH_RATE_WINDOW_SECONDS

    def _key(self, request: Request) -> str:
        return f"ratelimit:{self.scope}:{client_ip(request)}"

    def check(self, request: Request) -> None:
        r = get_redis()
        if r is None:
            return
        try:
            count = int(r.get(self._key(request)) or 0)
        except (RedisError, ValueError):
            return
        if count >= self.limit:
            logger.warning("Rate limit hit for %s from %s", self.scope, client_ip(request))
            raise RateLimitedError(
                f"Too many attempts from this IP, please try again after {self.window_seconds // 60} minutes"
            )

    def hit(self, request: Request) -> None:
        r = get_redis()
        if r is None:
            return
        key = self._key(request)
        try:
            count = r.incr(key)
            if count == 1:
                r.expire(key, self.window_seconds)
        except RedisError as exc:
            logger.info("Rate limit counter unavailable: %s", exc)


login_limiter = FailedAttemptLimiter("login")
refresh_limiter = FailedAttemptLimiter("refresh")


class RequestLimiter:
    """Fixed-window counter of every request per client ip."""

    def __init__(self, scope: str, limit: int, window_seconds: int):
        self.scope = scope
        self.limit = limit
        self.window_seconds = window_seconds

    def allow(self, request: Request) -> bool:
        r = get_redis()
        if r is None:
            return True
        key = f"ratelimit:{self.scope}:{client_ip(request)}"
        try:
            count = r.incr(key)
            if count == 1:
                r.expire(key, self.window_seconds)
        except RedisError as exc:
            logger.info("Rate limit counter unavailable: %s", exc)
            return True
        if count > self.limit:
            logger.warning("Request limit hit from %s", client_ip(request))
            return False
        return True


api_limiter = RequestLimiter("api", settings.API_RATE_LIMIT, settings.API_RATE_WINDOW_SECONDS)
