"""
Redis-backed cache store.
"""

import binascii
from typing import Optional

import redis.asyncio as redis
from redis.exceptions import RedisError

from shared.errors import CacheStoreError
from shared.logging import get_logger
from .store import CacheEntry


class RedisCacheStore:
    """CacheStore implementation on top of redis.asyncio."""

    def __init__(self, redis_url: str, client: Optional[redis.Redis] = None):
        self.redis_url = redis_url
        self.logger = get_logger("response_cache.store.redis")
        self._redis: Optional[redis.Redis] = client

    async def _get_redis(self) -> redis.Redis:
        """Get Redis connection."""
        if self._redis is None:
            try:
                self._redis = redis.from_url(
                    self.redis_url,
                    socket_connect_timeout=2,
                    socket_timeout=2,
                )
            except ValueError as e:
                # Malformed URL
                raise CacheStoreError("connect", str(e), {"redis_url": self.redis_url}) from e
        return self._redis

    async def start(self):
        """Open the connection and verify the backend answers."""
        if not await self.ping():
            raise CacheStoreError("start", "Redis did not answer PING", {"redis_url": self.redis_url})
        self.logger.info("Redis cache store started")

    async def stop(self):
        """Close the Redis connection."""
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None
            self.logger.info("Redis cache store stopped")

    async def ping(self) -> bool:
        try:
            redis_client = await self._get_redis()
            return bool(await redis_client.ping())
        except (RedisError, OSError, CacheStoreError) as e:
            self.logger.error("Redis ping failed", error=str(e))
            return False

    async def has(self, key: str) -> bool:
        try:
            redis_client = await self._get_redis()
            return bool(await redis_client.exists(key))
        except (RedisError, OSError) as e:
            raise CacheStoreError("has", str(e), {"key": key}) from e

    async def get(self, key: str) -> Optional[CacheEntry]:
        try:
            redis_client = await self._get_redis()
            payload = await redis_client.get(key)
        except (RedisError, OSError) as e:
            raise CacheStoreError("get", str(e), {"key": key}) from e

        if payload is None:
            return None

        try:
            return CacheEntry.from_payload(payload)
        except (ValueError, KeyError, TypeError, binascii.Error) as e:
            # json.JSONDecodeError is a ValueError
            self.logger.warning("Discarding unreadable cache entry", key=key, error=str(e))
            return None

    async def put(self, key: str, entry: CacheEntry, ttl_minutes: int) -> None:
        try:
            redis_client = await self._get_redis()
            await redis_client.setex(key, ttl_minutes * 60, entry.to_payload())
        except (RedisError, OSError) as e:
            raise CacheStoreError("put", str(e), {"key": key}) from e

        self.logger.debug("Stored cache entry", key=key, ttl_minutes=ttl_minutes)

    async def forget(self, key: str) -> None:
        try:
            redis_client = await self._get_redis()
            await redis_client.delete(key)
        except (RedisError, OSError) as e:
            raise CacheStoreError("forget", str(e), {"key": key}) from e

    async def clear_namespace(self, prefix: str) -> int:
        """Delete every key under ``prefix``; returns the number removed."""
        try:
            redis_client = await self._get_redis()
            removed = 0
            async for key in redis_client.scan_iter(match=f"{prefix}*"):
                removed += await redis_client.delete(key)
        except (RedisError, OSError) as e:
            raise CacheStoreError("clear", str(e), {"prefix": prefix}) from e

        self.logger.info("Cleared cache namespace", prefix=prefix, keys_count=removed)
        return removed
