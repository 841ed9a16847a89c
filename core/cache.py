"""
Redis connection layer.

One lazily created client per process. When Redis cannot be reached the
caller gets None and decides how to degrade; cooldown storage falls back to
process memory.
"""
import logging
from typing import Optional
import redis
from redis.exceptions import RedisError
from core.config import settings

logger = logging.getLogger(__name__)

KEY_SEPARATOR = ":"

_redis_client: Optional[redis.Redis] = None


def get_redis_client(url: Optional[str] = None) -> Optional[redis.Redis]:
    """Shared client for REDIS_URL (or ``url``), or None if Redis is unreachable."""
    global _redis_client

    if _redis_client is not None:
        return _redis_client

    try:
        client = redis.from_url(
            url or settings.REDIS_URL,
            decode_responses=True,
            socket_connect_timeout=2,
            socket_timeout=2,
            health_check_interval=30,
        )
        client.ping()
    except RedisError as e:
        logger.warning(f"Redis unavailable: {e}")
        return None

    logger.info("Redis connection established")
    _redis_client = client
    return _redis_client


def reset_redis_client() -> None:
    """Forget the shared client (tests, or after a config change)."""
    global _redis_client
    _redis_client = None


def cache_key(prefix: str, *parts) -> str:
    """``prefix:part1:part2``; None parts are skipped."""
    return KEY_SEPARATOR.join([prefix] + [str(p) for p in parts if p is not None])
