"""
Redis store for paywall sessions and notices
Expiry is delegated to Redis (SETEX), nothing is swept in-process
"""

import json
import logging
from typing import Optional, Any, Dict
import redis.asyncio as aioredis
from redis.asyncio import Redis
from redis.exceptions import RedisError

from .config import get_paywall_config

logger = logging.getLogger(__name__)

KEY_PREFIX = 'paywall'


def session_key(resource_id: str, token: str) -> str:
    return f"{KEY_PREFIX}:session:{resource_id}:{token}"


def notice_key(notice_id: str) -> str:
    return f"{KEY_PREFIX}:notice:{notice_id}"


class CacheManager:
    """
    Async Redis cache manager for paywall state

    Read errors are logged and reported as a miss, so an unavailable store
    means "no session" and the resource stays gated.
    """

    def __init__(
        self,
        redis_url: str = "redis://localhost:6379/0",
        password: Optional[str] = None,
        max_connections: int = 50,
        default_ttl: int = 1800
    ):
        self.redis_url = redis_url
        self.password = password
        self.max_connections = max_connections
        self.default_ttl = default_ttl
        self.redis: Optional[Redis] = None

    async def connect(self):
        """Initialize Redis connection pool"""
        try:
            self.redis = aioredis.from_url(
                self.redis_url,
                password=self.password,
                max_connections=self.max_connections,
                decode_responses=True,
                encoding="utf-8"
            )
            await self.redis.ping()
            logger.info("Redis cache connected successfully")
        except RedisError as e:
            logger.error(f"Failed to connect to Redis: {e}")
            self.redis = None

    async def disconnect(self):
        """Close Redis connection"""
        if self.redis:
            await self.redis.aclose()
            self.redis = None
            logger.info("Redis cache disconnected")

    @property
    def connected(self) -> bool:
        return self.redis is not None

    async def get(self, key: str) -> Optional[Any]:
        """Get value from cache"""
        if not self.redis:
            return None

        try:
            value = await self.redis.get(key)
            if value:
                return json.loads(value)
            return None
        except RedisError as e:
            logger.error(f"Redis GET error: {e}")
            return None
        except ValueError as e:
            logger.error(f"Corrupt cache entry at {key}: {e}")
            return None

    async def set(
        self,
        key: str,
        value: Any,
        ttl: Optional[int] = None
    ) -> bool:
        """Set value in cache with TTL"""
        if not self.redis:
            return False

        try:
            ttl = ttl or self.default_ttl
            serialized = json.dumps(value, default=str)
            await self.redis.setex(key, ttl, serialized)
            return True
        except (RedisError, TypeError, ValueError) as e:
            logger.error(f"Redis SET error: {e}")
            return False

    async def delete(self, key: str) -> bool:
        """Delete key from cache"""
        if not self.redis:
            return False

        try:
            await self.redis.delete(key)
            return True
        except RedisError as e:
            logger.error(f"Redis DELETE error: {e}")
            return False

    async def pop(self, key: str) -> Optional[Any]:
        """Get and delete in one round trip"""
        if not self.redis:
            return None

        try:
            value = await self.redis.getdel(key)
            return json.loads(value) if value else None
        except RedisError as e:
            logger.error(f"Redis GETDEL error: {e}")
            return None
        except ValueError as e:
            logger.error(f"Corrupt cache entry at {key}: {e}")
            return None

    async def get_stats(self) -> Dict[str, Any]:
        """Connection status for the readiness probe"""
        if not self.redis:
            return {"status": "disconnected"}

        try:
            await self.redis.ping()
            return {"status": "connected"}
        except RedisError as e:
            logger.error(f"Redis PING error: {e}")
            return {"status": "error", "error": str(e)}


# Global cache manager instance
_cache_manager: Optional[CacheManager] = None


async def get_cache_manager() -> CacheManager:
    """Get or create global cache manager"""
    global _cache_manager

    if _cache_manager is None:
        config = get_paywall_config()
        _cache_manager = CacheManager(
            redis_url=config.redis_url,
            password=config.redis_password,
            default_ttl=config.session_ttl
        )
        await _cache_manager.connect()

    return _cache_manager


async def close_cache():
    """Close global cache manager"""
    global _cache_manager
    if _cache_manager:
        await _cache_manager.disconnect()
        _cache_manager = None
