"""Redis client configuration and cache helpers."""

import json
from typing import Any, cast

import redis
import structlog

from app.config import settings

logger = structlog.get_logger(__name__)

# Global Redis client instance
_redis_client: redis.Redis | None = None


def get_redis_client() -> redis.Redis:
    """
    Get or create Redis client instance.

    Returns:
        Redis client instance
    """
    global _redis_client

    if _redis_client is None:
        _redis_client = redis.Redis(
            host=settings.redis_host,
            port=settings.redis_port,
            username=settings.redis_username,
            password=settings.redis_password,
            decode_responses=settings.redis_decode_responses,
            socket_connect_timeout=5,
            socket_keepalive=True,
            health_check_interval=30,
        )

    return _redis_client


def check_redis_connection() -> bool:
    """Check if Redis connection is healthy."""
    try:
        get_redis_client().ping()
        return True
    except redis.RedisError:
        return False


def close_redis_connection() -> None:
    """Close Redis connection."""
    global _redis_client

    if _redis_client is not None:
        _redis_client.close()
        _redis_client = None


class CacheManager:
    """
    Redis-backed JSON cache.

    Reads degrade to a cache miss when Redis is unavailable. Deletions raise
    so that callers which must not serve stale data can log the failure.
    """

    def __init__(self, redis_client: redis.Redis):
        """Initialize cache manager with Redis client."""
        self.redis = redis_client

    def get_json(self, key: str) -> Any | None:
        """
        Get JSON value from cache and deserialize.

        Args:
            key: Cache key

        Returns:
            Deserialized object or None
        """
        try:
            value = cast(str | None, self.redis.get(key))
            if value:
                return json.loads(value)
            return None
        except (redis.RedisError, ValueError) as e:
            logger.warning("cache_read_failed", key=key, error=str(e))
            return None

    def set_json(
        self,
        key: str,
        value: Any,
        ttl: int | None = None,
    ) -> bool:
        """
        Serialize and set JSON value in cache.

        Args:
            key: Cache key
            value: Value to serialize and cache
            ttl: Time to live in seconds

        Returns:
            True if successful, False otherwise
        """
        try:
            json_value = json.dumps(value, default=str)
            if ttl:
                self.redis.setex(key, ttl, json_value)
            else:
                self.redis.set(key, json_value)
            return True
        except (redis.RedisError, TypeError) as e:
            logger.warning("cache_write_failed", key=key, error=str(e))
            return False

    def delete(self, key: str) -> int:
        """Delete a single key."""
        return cast(int, self.redis.delete(key))

    def delete_pattern(self, pattern: str, batch_size: int = 100) -> int:
        """
        Delete all keys matching a pattern.

        Uses SCAN so large keyspaces are not blocked.

        Args:
            pattern: Redis key pattern (e.g., 'appointments:doctor:42:*')
            batch_size: Keys deleted per round trip

        Returns:
            Number of keys deleted
        """
        deleted = 0
        batch: list[str] = []
        for key in self.redis.scan_iter(match=pattern, count=batch_size):
            batch.append(key)
            if len(batch) >= batch_size:
                deleted += cast(int, self.redis.delete(*batch))
                batch = []
        if batch:
            deleted += cast(int, self.redis.delete(*batch))
        return deleted
