"""
Catalog read paths with read-through caching.
"""

import math
from typing import Any, Dict, Optional

from shared.errors import NotFoundError
from shared.logging import get_logger
from ..cache.redis_cache import (
    ORDER_LIST_TTL,
    PRODUCTS_INDEX,
    PRODUCT_LIST_TTL,
    PRODUCT_TTL,
    RedisCache,
    order_list_index,
    order_list_key,
    product_key,
    product_list_key,
)


def pagination(page: int, limit: int, total: int) -> Dict[str, int]:
    return {
        "page": page,
        "limit": limit,
        "total": total,
        "pages": math.ceil(total / limit) if limit else 0,
    }


class CatalogService:
    """Products and order history."""

    def __init__(self, store: Any, cache: RedisCache):
        self.store = store
        self.cache = cache
        self.logger = get_logger("commerce.catalog")

    async def list_products(self, page: int, limit: int, category: Optional[str] = None) -> Dict[str, Any]:
        key = product_list_key(page, limit, category)
        cached = await self.cache.get(key)
        if cached is not None:
            return cached

        products, total = await self.store.list_products(page, limit, category)
        data = {"products": products, "pagination": pagination(page, limit, total)}
        await self.cache.set_indexed(key, data, PRODUCT_LIST_TTL, PRODUCTS_INDEX)
        return data

    async def get_product(self, product_id: int) -> Dict[str, Any]:
        key = product_key(product_id)
        product = await self.cache.get(key)
        if product is not None:
            return product

        product = await self.store.get_product(product_id)
        if product is None:
            raise NotFoundError("Product not found", details={"product_id": product_id})

        await self.cache.set(key, product, PRODUCT_TTL)
        return product

    async def list_user_orders(self, user_id: int, page: int, limit: int) -> Dict[str, Any]:
        key = order_list_key(user_id, page, limit)
        cached = await self.cache.get(key)
        if cached is not None:
            return cached

        orders, total = await self.store.list_user_orders(user_id, page, limit)
        data = {"orders": orders, "pagination": pagination(page, limit, total)}
        await self.cache.set_indexed(key, data, ORDER_LIST_TTL, order_list_index(user_id))
        return data
