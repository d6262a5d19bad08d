"""
Redis Configuration

Shared async Redis client. Used by the rate limiter for its sliding-window
counters; the API keeps working without Redis (the limiter falls back to
process memory).
"""

from redis.asyncio import Redis, from_url

from app.core.config import settings

# Redis client instance, None until init_redis succeeds
redis_client: Redis | None = None


async def init_redis() -> Redis:
    """
    Connect to Redis and verify the connection with a PING.

    Call this on application startup. On failure the client stays unset.
    """
    global redis_client
    client = from_url(
        settings.redis_url,
        encoding="utf-8",
        decode_responses=True,
    )
    try:
        await client.ping()
    except Exception:
        await client.aclose()
        raise
    redis_client = client
    return redis_client


async def get_redis() -> Redis | None:
    """Get the Redis client, or None if Redis is not available."""
    return redis_client


def is_redis_available() -> bool:
    """Check if Redis client is initialized."""
    return redis_client is not None


async def close_redis() -> None:
    """Close the Redis connection."""
    global redis_client
    if redis_client:
        await redis_client.aclose()
        redis_client = None
