"""
Unit tests for RedisCache.
"""

import pytest

from service_commerce.app.cache.redis_cache import (
    PRODUCTS_INDEX,
    RedisCache,
    blacklist_key,
    order_list_key,
    product_list_key,
)
from shared.errors import InfrastructureError
from shared.metrics import MetricsCollector
from shared.test_helpers import InMemoryRedis


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


class TestRedisCache:
    """Test cases for RedisCache."""

    @pytest.fixture
    def clock(self):
        return FakeClock()

    @pytest.fixture
    def redis_client(self, clock):
        return InMemoryRedis(clock=clock)

    @pytest.fixture
    def metrics(self):
        return MetricsCollector("commerce-test")

    @pytest.fixture
    def cache(self, redis_client, metrics):
        return RedisCache("redis://localhost:6379/0", metrics=metrics, client=redis_client)

    @pytest.mark.asyncio
    async def test_set_then_get_returns_equal_value(self, cache):
        value = {"id": 7, "name": "Laptop", "price": 999.99, "tags": ["a", "b"], "meta": {"active": True}}

        assert await cache.set("product:7", value, 600) is True
        assert await cache.get("product:7") == value

    @pytest.mark.asyncio
    async def test_delete_makes_key_absent(self, cache):
        await cache.set("profile:1", {"id": 1}, 1800)

        assert await cache.delete("profile:1") is True
        assert await cache.get("profile:1") is None
        assert await cache.exists("profile:1") is False

    @pytest.mark.asyncio
    async def test_entries_expire_after_ttl(self, cache, clock):
        await cache.set("dashboard:1", {"stats": {}}, 600)

        clock.now += 599
        assert await cache.get("dashboard:1") == {"stats": {}}

        clock.now += 2
        assert await cache.get("dashboard:1") is None

    @pytest.mark.asyncio
    async def test_hits_and_misses_are_counted_by_namespace(self, cache, metrics):
        await cache.get("user:1")
        await cache.set("user:1", {"id": 1}, 3600)
        await cache.get("user:1")

        assert metrics.sample_value("cache_operations_total", namespace="user", result="miss") == 1.0
        assert metrics.sample_value("cache_operations_total", namespace="user", result="hit") == 1.0

    @pytest.mark.asyncio
    async def test_transport_failure_degrades_to_miss(self, cache, redis_client, metrics):
        await cache.set("user:1", {"id": 1}, 3600)
        redis_client.broken = True

        assert await cache.get("user:1") is None
        assert await cache.set("user:2", {"id": 2}, 3600) is False
        assert await cache.delete("user:1") is False
        assert await cache.exists(blacklist_key("token")) is False
        assert metrics.sample_value("cache_operations_total", namespace="user", result="error") == 3.0

    @pytest.mark.asyncio
    async def test_corrupt_value_is_a_miss(self, cache, redis_client):
        await redis_client.set("product:1", "{not json")

        assert await cache.get("product:1") is None

    @pytest.mark.asyncio
    async def test_unconnected_cache_is_always_empty(self):
        cache = RedisCache("redis://localhost:6379/0")

        assert await cache.get("user:1") is None
        assert await cache.set("user:1", {"id": 1}, 60) is False
        assert await cache.exists("user:1") is False
        assert await cache.invalidate_index(PRODUCTS_INDEX) == 0
        assert await cache.health_check() is False

    @pytest.mark.asyncio
    async def test_invalidate_index_removes_every_registered_key(self, cache, redis_client):
        first = product_list_key(1, 10, None)
        second = product_list_key(2, 10, "Books")
        await cache.set_indexed(first, {"products": []}, 300, PRODUCTS_INDEX)
        await cache.set_indexed(second, {"products": []}, 300, PRODUCTS_INDEX)
        await cache.set("product:1", {"id": 1}, 600)

        removed = await cache.invalidate_index(PRODUCTS_INDEX)

        assert removed == 2
        assert await cache.get(first) is None
        assert await cache.get(second) is None
        assert await redis_client.exists(PRODUCTS_INDEX) == 0
        assert await cache.get("product:1") == {"id": 1}

    @pytest.mark.asyncio
    async def test_index_lives_as_long_as_its_members(self, cache, redis_client):
        key = order_list_key(5, 1, 10)
        await cache.set_indexed(key, {"orders": []}, 300, "index:orders:user:5")

        assert await redis_client.ttl("index:orders:user:5") == 300
        assert await redis_client.ttl(key) == 300

    @pytest.mark.asyncio
    async def test_start_pings_and_stop_closes(self, cache, redis_client):
        await cache.start()
        assert await cache.health_check() is True

        await cache.stop()
        assert redis_client.closed is True

    @pytest.mark.asyncio
    async def test_start_failure_raises_infrastructure_error(self, cache, redis_client):
        redis_client.broken = True

        with pytest.raises(InfrastructureError):
            await cache.start()

    def test_list_keys_are_deterministic(self):
        assert product_list_key(1, 10, None) == "products:1:10:all"
        assert product_list_key(3, 20, "Books") == "products:3:20:Books"
        assert order_list_key(4, 2, 5) == "orders:user:4:2:5"
        assert blacklist_key("abc") == "blacklist:abc"
