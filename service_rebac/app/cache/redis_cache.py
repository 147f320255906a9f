"""
Redis caching layer for authorization decisions.
"""

import json
from datetime import datetime
from typing import Optional

import redis.asyncio as redis
from shared.logging import get_logger
from shared.errors import ServiceError
from .base import DecisionCache, DEFAULT_TTL_SECONDS
from ..policy.models import CheckResult


class RedisDecisionCache(DecisionCache):
    """Redis-backed decision cache.

    Redis enforces the TTL itself, so no sweep is needed. Lookup failures
    are logged and reported as misses: the engine then recomputes the
    decision from the policies.
    """

    KEY_PREFIX = "rebac:"

    def __init__(self, redis_url: str, default_ttl: int = DEFAULT_TTL_SECONDS,
                 client: Optional[redis.Redis] = None):
        self.redis_url = redis_url
        self.default_ttl = default_ttl
        self.logger = get_logger("rebac.cache.redis")
        self._redis: Optional[redis.Redis] = client

    async def _get_redis(self) -> redis.Redis:
        """Get Redis connection."""
        if self._redis is None:
            self._redis = redis.from_url(
                self.redis_url,
                encoding="utf-8",
                decode_responses=True,
                socket_connect_timeout=5,
                socket_timeout=5,
                retry_on_timeout=True,
                health_check_interval=30
            )
        return self._redis

    async def start(self):
        """Start the Redis cache."""
        try:
            redis_client = await self._get_redis()
            await redis_client.ping()
            self.logger.info("Redis decision cache started", ttl=self.default_ttl)

        except Exception as e:
            self.logger.error("Failed to start Redis cache", error=str(e))
            raise ServiceError(f"Failed to start Redis cache: {e}", code="REDIS_START_FAILED")

    async def stop(self):
        """Stop the Redis cache."""
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None
            self.logger.info("Redis decision cache stopped")

    def _key(self, key: str) -> str:
        return f"{self.KEY_PREFIX}{key}"

    async def get(self, key: str) -> Optional[CheckResult]:
        try:
            redis_client = await self._get_redis()
            cached_data = await redis_client.get(self._key(key))
            if not cached_data:
                return None

            return CheckResult.from_dict(json.loads(cached_data))

        except Exception as e:
            self.logger.error("Error getting cached decision", cache_key=key, error=str(e))
            return None

    async def set(self, key: str, value: CheckResult, ttl: Optional[int] = None) -> None:
        ttl_seconds = self.default_ttl if ttl is None else ttl
        data = {**value.to_dict(), "cached_at": datetime.now().isoformat()}

        try:
            redis_client = await self._get_redis()
            await redis_client.setex(self._key(key), ttl_seconds, json.dumps(data))
            self.logger.debug("Cached decision", cache_key=key, ttl=ttl_seconds)
        except Exception as e:
            self.logger.error("Error caching decision", cache_key=key, error=str(e))

    async def clear(self) -> None:
        """Delete every decision key."""
        redis_client = await self._get_redis()
        keys = [key async for key in redis_client.scan_iter(match=f"{self.KEY_PREFIX}*")]
        if keys:
            await redis_client.delete(*keys)
        self.logger.info("Decision cache cleared", count=len(keys))

    async def health_check(self) -> bool:
        """Check Redis health."""
        try:
            redis_client = await self._get_redis()
            await redis_client.ping()
            return True
        except Exception:
            return False
