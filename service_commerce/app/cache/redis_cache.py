"""
Redis caching layer for the Commerce service.

Every operation is best-effort: transport or decode failures are logged and
reported as a miss (``None``) or ``False``, never raised to the caller.
"""

import json
from typing import Any, Iterable, Optional

import redis.asyncio as redis

from shared.errors import InfrastructureError
from shared.logging import get_logger
from shared.metrics import MetricsCollector

# TTLs in seconds
USER_TTL = 3600
PROFILE_TTL = 1800
DASHBOARD_TTL = 600
PRODUCT_TTL = 600
PRODUCT_LIST_TTL = 300
ORDER_LIST_TTL = 300

PRODUCTS_INDEX = "index:products"


def user_key(user_id: Any) -> str:
    return f"user:{user_id}"


def profile_key(user_id: Any) -> str:
    return f"profile:{user_id}"


def dashboard_key(user_id: Any) -> str:
    return f"dashboard:{user_id}"


def product_key(product_id: Any) -> str:
    return f"product:{product_id}"


def product_list_key(page: int, limit: int, category: Optional[str]) -> str:
    return f"products:{page}:{limit}:{category or 'all'}"


def order_list_key(user_id: Any, page: int, limit: int) -> str:
    return f"orders:user:{user_id}:{page}:{limit}"


def order_list_index(user_id: Any) -> str:
    return f"index:orders:user:{user_id}"


def blacklist_key(token: str) -> str:
    return f"blacklist:{token}"


class RedisCache:
    """Redis cache with JSON values and secondary key indexes."""

    def __init__(self, redis_url: str, metrics: Optional[MetricsCollector] = None,
                 client: Optional[Any] = None):
        self.redis_url = redis_url
        self.metrics = metrics
        self.logger = get_logger("commerce.cache.redis")
        self.redis: Optional[Any] = client
        self._injected = client is not None

    @property
    def client(self) -> Optional[Any]:
        """Underlying client, or None when the cache is not connected."""
        return self.redis

    async def start(self):
        """Start the Redis cache."""
        try:
            if self.redis is None:
                self.redis = redis.from_url(
                    self.redis_url,
                    encoding="utf-8",
                    decode_responses=True,
                    socket_connect_timeout=5,
                    socket_timeout=5,
                    retry_on_timeout=True,
                    health_check_interval=30
                )

            # Test connection
            await self.redis.ping()

            self.logger.info("Redis cache started")

        except Exception as e:
            self.logger.error("Failed to start Redis cache", error=str(e))
            if not self._injected:
                self.redis = None
            raise InfrastructureError("Redis cache unavailable", details={"error": str(e)}) from e

    async def stop(self):
        """Stop the Redis cache."""
        if self.redis is not None:
            await self.redis.aclose()
            self.logger.info("Redis cache stopped")
            if not self._injected:
                self.redis = None

    async def health_check(self) -> bool:
        """Ping Redis."""
        if self.redis is None:
            return False
        try:
            return bool(await self.redis.ping())
        except Exception as e:
            self.logger.error("Redis health check failed", error=str(e))
            return False

    def _record(self, key: str, result: str):
        if self.metrics:
            self.metrics.increment_counter(
                "cache_operations_total", namespace=key.split(":", 1)[0], result=result
            )

    async def get(self, key: str) -> Optional[Any]:
        """Return the decoded value for ``key`` or None on miss or failure."""
        if self.redis is None:
            self._record(key, "miss")
            return None
        try:
            cached_data = await self.redis.get(key)
            if cached_data is None:
                self._record(key, "miss")
                return None

            value = json.loads(cached_data)
            self._record(key, "hit")
            return value

        except Exception as e:
            self.logger.error("Cache get error", key=key, error=str(e))
            self._record(key, "error")
            return None

    async def set(self, key: str, value: Any, ttl: int) -> bool:
        """Store ``value`` as JSON under ``key`` for ``ttl`` seconds."""
        if self.redis is None:
            return False
        try:
            await self.redis.setex(key, ttl, json.dumps(value))
            return True
        except Exception as e:
            self.logger.error("Cache set error", key=key, error=str(e))
            self._record(key, "error")
            return False

    async def delete(self, key: str) -> bool:
        """Remove ``key``. True when the delete reached Redis."""
        if self.redis is None:
            return False
        try:
            await self.redis.delete(key)
            return True
        except Exception as e:
            self.logger.error("Cache delete error", key=key, error=str(e))
            self._record(key, "error")
            return False

    async def exists(self, key: str) -> bool:
        """True when ``key`` is present."""
        if self.redis is None:
            return False
        try:
            return bool(await self.redis.exists(key))
        except Exception as e:
            self.logger.error("Cache exists error", key=key, error=str(e))
            self._record(key, "error")
            return False

    async def set_indexed(self, key: str, value: Any, ttl: int, index: str) -> bool:
        """Store ``value`` and register ``key`` in the ``index`` set."""
        if not await self.set(key, value, ttl):
            return False
        try:
            await self.redis.sadd(index, key)
            # members of one index share a TTL, so the index never expires first
            await self.redis.expire(index, ttl)
            return True
        except Exception as e:
            self.logger.error("Cache index error", key=key, index=index, error=str(e))
            self._record(index, "error")
            return False

    async def invalidate_index(self, index: str) -> int:
        """Delete every key registered in ``index`` and the index itself."""
        if self.redis is None:
            return 0
        try:
            members = await self.redis.smembers(index)
            keys = list(members) + [index]
            await self.redis.delete(*keys)
            self.logger.debug("Cache index invalidated", index=index, keys=len(members))
            return len(members)
        except Exception as e:
            self.logger.error("Cache index invalidation error", index=index, error=str(e))
            self._record(index, "error")
            return 0

    async def delete_many(self, keys: Iterable[str]) -> bool:
        """Delete several keys; True when every delete succeeded."""
        results = [await self.delete(key) for key in keys]
        return all(results)
