"""
Unit tests for CatalogService.
"""

import pytest

from service_commerce.app.cache.redis_cache import (
    PRODUCTS_INDEX,
    RedisCache,
    order_list_index,
    order_list_key,
    product_key,
    product_list_key,
)
from service_commerce.app.catalog.service import CatalogService, pagination
from shared.errors import InfrastructureError, NotFoundError
from shared.test_helpers import InMemoryRedis, InMemoryStore, test_data_factory


class TestCatalogService:
    """Test cases for CatalogService."""

    @pytest.fixture
    def store(self):
        store = InMemoryStore()
        test_data_factory.seed_products(store)
        return store

    @pytest.fixture
    def redis_client(self):
        return InMemoryRedis()

    @pytest.fixture
    def catalog(self, store, redis_client):
        return CatalogService(store, RedisCache("redis://localhost:6379/0", client=redis_client))

    def test_pagination(self):
        assert pagination(1, 10, 0) == {"page": 1, "limit": 10, "total": 0, "pages": 0}
        assert pagination(2, 3, 7) == {"page": 2, "limit": 3, "total": 7, "pages": 3}

    @pytest.mark.asyncio
    async def test_list_products_is_cached_and_indexed(self, catalog, store, redis_client):
        first = await catalog.list_products(1, 2)
        second = await catalog.list_products(1, 2)

        assert first == second
        assert len(first["products"]) == 2
        assert first["pagination"] == {"page": 1, "limit": 2, "total": 4, "pages": 2}
        assert store.calls.count("list_products") == 1
        assert await redis_client.ttl(product_list_key(1, 2, None)) == 300
        assert product_list_key(1, 2, None) in await redis_client.smembers(PRODUCTS_INDEX)

    @pytest.mark.asyncio
    async def test_category_filter_uses_its_own_key(self, catalog, redis_client):
        books = await catalog.list_products(1, 10, "Books")
        everything = await catalog.list_products(1, 10)

        assert [p["name"] for p in books["products"]] == ["Book"]
        assert len(everything["products"]) == 4
        assert await redis_client.exists(product_list_key(1, 10, "Books")) == 1
        assert await redis_client.exists(product_list_key(1, 10, None)) == 1

    @pytest.mark.asyncio
    async def test_get_product_reads_through(self, catalog, store, redis_client):
        product = await catalog.get_product(1)
        again = await catalog.get_product(1)

        assert product["name"] == "Laptop"
        assert again == product
        assert store.calls.count("get_product") == 1
        assert await redis_client.ttl(product_key(1)) == 600

    @pytest.mark.asyncio
    async def test_get_unknown_product(self, catalog, redis_client):
        with pytest.raises(NotFoundError) as exc_info:
            await catalog.get_product(999)

        assert exc_info.value.status_code == 404
        assert await redis_client.exists(product_key(999)) == 0

    @pytest.mark.asyncio
    async def test_user_orders_are_indexed_per_user(self, catalog, store, redis_client):
        user = store.add_user("buyer", "buyer@example.com")
        async with store.transaction() as tx:
            await tx.insert_order(user["id"], 10, "pending")

        data = await catalog.list_user_orders(user["id"], 1, 10)

        assert data["pagination"]["total"] == 1
        assert data["orders"][0]["item_count"] == 0
        key = order_list_key(user["id"], 1, 10)
        assert key in await redis_client.smembers(order_list_index(user["id"]))

    @pytest.mark.asyncio
    async def test_store_outage_propagates(self, catalog, store):
        store.available = False

        with pytest.raises(InfrastructureError):
            await catalog.list_products(1, 10)
