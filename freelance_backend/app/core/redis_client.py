"""
Redis client initialization and connection management.

Redis backs the request rate limiter only; no report state lives there.
"""

import logging

import redis.asyncio as redis
from redis.exceptions import RedisError
from freelance_backend.app.core.config import settings

logger = logging.getLogger(__name__)

# Create async Redis client
redis_client = redis.from_url(
    settings.redis_url,
    decode_responses=settings.redis_decode_responses,
)


async def get_redis():
    """FastAPI dependency returning the shared Redis client."""
    return redis_client


async def ping_redis() -> bool:
    """
    Test Redis connection.

    Returns:
        True if connection successful, False otherwise
    """
    try:
        return await redis_client.ping()
    except RedisError as exc:
        logger.warning("Redis ping failed: %s", exc)
        return False
