"""
Rate Limiting Module

Sliding-window rate limiting for API endpoints using Redis sorted sets.
Falls back to in-memory storage when Redis is unavailable (per process only).

Applied to submission creation: anonymous submissions are unbounded by
design, so the limiter is what keeps a single client from flooding the
document bucket.
"""

import logging
import time
from collections.abc import Callable
from functools import wraps
from typing import Any

from fastapi import HTTPException, Request, status

from app.core import redis as redis_module

logger = logging.getLogger(__name__)

# In-memory fallback store. Format: {key: [timestamp, ...]}
_memory_store: dict[str, list[float]] = {}

# Longest window seen and last full sweep, for evicting idle keys
_memory_longest_window: int = 0
_memory_last_sweep: float = 0.0


class RateLimitExceeded(HTTPException):
    """Exception raised when rate limit is exceeded."""

    def __init__(self, limit: int, window_seconds: int):
        super().__init__(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail={
                "error": "RATE_LIMIT_EXCEEDED",
                "message": f"Rate limit exceeded. Maximum {limit} requests per {window_seconds} seconds.",
                "retry_after_seconds": window_seconds,
            },
            headers={"Retry-After": str(window_seconds)},
        )


async def _check_rate_limit_redis(
    client,
    key: str,
    limit: int,
    window_seconds: int,
) -> bool:
    """
    Check rate limit using a Redis sorted set of request timestamps.

    Returns:
        True if request is allowed, False if rate limit exceeded
    """
    now = time.time()
    window_start = now - window_seconds

    pipe = client.pipeline()
    pipe.zremrangebyscore(key, 0, window_start)
    pipe.zcard(key)
    pipe.zadd(key, {str(now): now})
    pipe.expire(key, window_seconds)

    results = await pipe.execute()
    current_count = results[1]

    return current_count < limit


def _sweep_memory_store(now: float) -> None:
    """Drop keys with no timestamps inside the longest window in use."""
    global _memory_last_sweep

    cutoff = now - _memory_longest_window
    idle = [
        key
        for key, timestamps in _memory_store.items()
        if not timestamps or timestamps[-1] <= cutoff
    ]
    for key in idle:
        del _memory_store[key]
    _memory_last_sweep = now


def _check_rate_limit_memory(key: str, limit: int, window_seconds: int) -> bool:
    """
    Check rate limit using in-memory storage.

    Does not coordinate across server instances. Idle keys are swept at most
    once per window so the store does not grow with every client seen.
    """
    global _memory_longest_window

    now = time.time()
    window_start = now - window_seconds

    _memory_longest_window = max(_memory_longest_window, window_seconds)
    if now - _memory_last_sweep >= _memory_longest_window:
        _sweep_memory_store(now)

    timestamps = [ts for ts in _memory_store.get(key, []) if ts > window_start]

    if len(timestamps) >= limit:
        _memory_store[key] = timestamps
        return False

    timestamps.append(now)
    _memory_store[key] = timestamps
    return True


async def check_rate_limit(key: str, limit: int, window_seconds: int) -> bool:
    """
    Check if a request is within rate limits.

    Tries Redis first, falls back to in-memory storage.

    Args:
        key: Unique key for this rate limit (e.g., "rate_limit:1.2.3.4:/path")
        limit: Maximum requests allowed in the window
        window_seconds: Time window in seconds

    Returns:
        True if request is allowed, False if rate limit exceeded
    """
    client = redis_module.redis_client

    if client is not None:
        try:
            return await _check_rate_limit_redis(client, key, limit, window_seconds)
        except Exception as e:
            logger.warning(f"Redis rate limit check failed, using memory: {e}")

    return _check_rate_limit_memory(key, limit, window_seconds)


def client_ip_key(request: Request) -> str:
    """Default rate limit key: client IP + endpoint path + method."""
    client_ip = request.client.host if request.client else "unknown"
    return f"rate_limit:{client_ip}:{request.method}:{request.url.path}"


def rate_limit(
    limit: int | Callable[[], int] = 10,
    window_seconds: int | Callable[[], int] = 60,
    key_func: Callable[[Request], str] | None = None,
):
    """
    Rate limiting decorator for FastAPI endpoints.

    The endpoint must accept a `request: Request` parameter.
    limit and window_seconds may be callables so values can be read from
    settings at request time.

    Usage:
        @router.post("")
        @rate_limit(limit=5, window_seconds=60)
        async def create(request: Request, ...):
            ...

    Raises:
        RateLimitExceeded: When rate limit is exceeded (HTTP 429)
    """

    def decorator(func: Callable) -> Callable:
        @wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> Any:
            request: Request | None = kwargs.get("request")
            if request is None:
                request = next((arg for arg in args if isinstance(arg, Request)), None)

            if request is None:
                logger.warning(
                    f"Rate limit decorator on {func.__name__} couldn't find Request object"
                )
                return await func(*args, **kwargs)

            max_requests = limit() if callable(limit) else limit
            window = window_seconds() if callable(window_seconds) else window_seconds
            key = key_func(request) if key_func else client_ip_key(request)

            if not await check_rate_limit(key, max_requests, window):
                logger.warning(f"Rate limit exceeded for {key}: {max_requests}/{window}s")
                raise RateLimitExceeded(max_requests, window)

            return await func(*args, **kwargs)

        return wrapper

    return decorator


__all__ = [
    "RateLimitExceeded",
    "check_rate_limit",
    "client_ip_key",
    "rate_limit",
]
