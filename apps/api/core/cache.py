"""
Redis access.

Shared Redis client plus small helpers for keys and short-lived locks.
Everything degrades gracefully: callers get None / fail-open results when
Redis is unavailable.
"""
import logging
from typing import Optional
import redis
from redis.exceptions import ConnectionError, TimeoutError, RedisError
from core.config import settings

logger = logging.getLogger(__name__)

# Redis connection pool (singleton)
_redis_client: Optional[redis.Redis] = None


def get_redis_client() -> Optional[redis.Redis]:
    """Get Redis client with connection pooling. Returns None if Redis unavailable."""
    global _redis_client

    if _redis_client is not None:
        return _redis_client

    try:
        _redis_client = redis.from_url(
            settings.REDIS_URL,
            decode_responses=True,
            socket_connect_timeout=2,
            socket_timeout=2,
            retry_on_timeout=True,
            health_check_interval=30
        )
        # Test connection
        _redis_client.ping()
        logger.info("Redis connection established")
        return _redis_client
    except (ConnectionError, TimeoutError, RedisError) as e:
        logger.warning(f"Redis unavailable: {e}. Falling back to in-process state.")
        _redis_client = None
        return None


def cache_key(prefix: str, *args, **kwargs) -> str:
    """Generate a key from prefix and arguments."""
    key_parts = [prefix]

    # Add args (skip None values)
    for arg in args:
        if arg is not None:
            key_parts.append(str(arg))

    # Add kwargs (sorted for consistency, skip None values)
    for k, v in sorted(kwargs.items()):
        if v is not None:
            key_parts.append(f"{k}:{v}")

    return ":".join(key_parts)


def acquire_lock(key: str, ttl_s: int) -> bool:
    """
    Take a best-effort lock. Returns False only when another holder has it.
    Fails open when Redis is unavailable.
    """
    client = get_redis_client()
    if not client:
        return True

    try:
        return bool(client.set(key, "1", nx=True, ex=ttl_s))
    except (ConnectionError, TimeoutError, RedisError) as e:
        logger.warning(f"Lock acquire error for key {key}: {e}")
        return True


def release_lock(key: str) -> None:
    client = get_redis_client()
    if not client:
        return
    try:
        client.delete(key)
    except (ConnectionError, TimeoutError, RedisError) as e:
        logger.warning(f"Lock release error for key {key}: {e}")
