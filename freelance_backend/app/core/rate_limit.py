"""
Request rate limiting using Redis.

Fixed-window counter per caller and route group: the first request of a
window creates the counter with a TTL, later requests increment it. Requests
over budget are rejected with 429 and a Retry-After header.
"""

import logging
import time

from fastapi import Depends, Request
from redis.exceptions import RedisError

from freelance_backend.app.core.config import settings
from freelance_backend.app.core.dependencies import CurrentUser, get_current_user
from freelance_backend.app.core.exceptions import RateLimitExceededError
from freelance_backend.app.core.redis_client import get_redis

logger = logging.getLogger(__name__)

# Redis key prefix for request counters
RATE_LIMIT_PREFIX = "ratelimit:"


def window_key(user_id: int, scope: str, now: float, window_seconds: int) -> tuple[str, int]:
    """
    Returns:
        (counter key, seconds until the window closes)
    """
    window = int(now // window_seconds)
    retry_after = window_seconds - int(now % window_seconds)
    return f"{RATE_LIMIT_PREFIX}{scope}:{user_id}:{window}", max(retry_after, 1)


async def hit(redis, user_id: int, scope: str) -> None:
    """
    Count one request against the caller's budget.

    Redis outages do not block requests: the failure is logged and the
    request is let through.

    Raises:
        RateLimitExceededError: Budget for the current window is exhausted
    """
    key, retry_after = window_key(user_id, scope, time.time(), settings.rate_limit_window_seconds)
    try:
        count = await redis.incr(key)
        if count == 1:
            await redis.expire(key, settings.rate_limit_window_seconds)
    except RedisError as exc:
        logger.warning("Rate limiter unavailable, request allowed: %s", exc)
        return

    if count > settings.rate_limit_requests:
        logger.warning("Rate limit exceeded for user %s on %s", user_id, scope)
        raise RateLimitExceededError(retry_after)


async def rate_limit(
    request: Request,
    current_user: CurrentUser = Depends(get_current_user),
    redis=Depends(get_redis)
) -> CurrentUser:
    """
    FastAPI dependency enforcing the per-user request budget.

    Usage:
        @router.post("/reports")
        async def create_report(current_user: CurrentUser = Depends(rate_limit)):
            ...
    """
    if settings.rate_limit_enabled:
        scope = request.scope.get("route").path if request.scope.get("route") else request.url.path
        await hit(redis, current_user.user_id, scope)
    return current_user
