"""
Order placement engine for the Commerce service.

Placement is all-or-nothing. Every requested line is checked against the
authoritative store before anything is written; the order row, its items
and the stock decrements are then written in one transaction. Each
decrement is conditional (``stock_quantity >= quantity``) so concurrent
placements can never drive stock below zero.
"""

import time
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, List, Optional, Sequence, Tuple

from pydantic import BaseModel

from shared.errors import BusinessRuleError, NotFoundError
from shared.logging import get_logger
from shared.metrics import MetricsCollector
from ..cache.redis_cache import (
    PRODUCTS_INDEX,
    RedisCache,
    dashboard_key,
    order_list_index,
    product_key,
)
from ..models import OrderItemRequest, OrderStatus

CENT = Decimal("0.01")


class OrderLine(BaseModel):
    """A validated line item priced at placement time."""
    product_id: int
    name: str
    quantity: int
    unit_price: Decimal
    total_price: Decimal


class PlacedOrder(BaseModel):
    """Result of a successful placement."""
    order_id: int
    total_amount: Decimal
    lines: List[OrderLine]


def to_money(value: Any) -> Decimal:
    """Decimal rounded to cents. Floats go through ``str`` to avoid binary noise."""
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


class OrderPlacementEngine:
    """Validates, persists and publishes orders."""

    def __init__(self, store: Any, cache: RedisCache, metrics: Optional[MetricsCollector] = None):
        self.store = store
        self.cache = cache
        self.metrics = metrics
        self.logger = get_logger("commerce.orders.engine")

    async def place_order(self, user_id: int, items: Sequence[OrderItemRequest]) -> PlacedOrder:
        """Place an order for ``user_id``.

        Raises:
            BusinessRuleError: empty order or insufficient stock.
            NotFoundError: an unknown product id (reported as 400).
        """
        start_time = time.time()
        result = "rejected"
        try:
            lines = await self._price_lines(items)
            total = sum((line.total_price for line in lines), Decimal("0.00"))
            order_id = await self._persist(user_id, lines, total)
            result = "placed"
        finally:
            if self.metrics:
                self.metrics.observe_histogram(
                    "order_placement_duration_seconds", time.time() - start_time, result=result
                )

        await self._invalidate(user_id, lines)

        self.logger.info(
            "Order placed",
            order_id=order_id,
            user_id=user_id,
            total_amount=str(total),
            items=len(lines)
        )
        if self.metrics:
            self.metrics.record_business_event("order_placed")

        return PlacedOrder(order_id=order_id, total_amount=total, lines=lines)

    async def _price_lines(self, items: Sequence[OrderItemRequest]) -> List[OrderLine]:
        """Check every item against live stock; nothing is written here."""
        if not items:
            raise BusinessRuleError("Order items are required")

        lines: List[OrderLine] = []
        requested: Dict[int, int] = {}

        for item in items:
            # Stock checks read the store directly, never the cache.
            product = await self.store.get_product(item.product_id)
            if product is None:
                raise NotFoundError(
                    f"Product with ID {item.product_id} not found",
                    details={"product_id": item.product_id},
                    status_code=400
                )

            requested[item.product_id] = requested.get(item.product_id, 0) + item.quantity
            if requested[item.product_id] > product["stock_quantity"]:
                raise BusinessRuleError(
                    f"Insufficient stock for product {product['name']}",
                    details={"product_id": item.product_id, "available": product["stock_quantity"]}
                )

            unit_price = to_money(product["price"])
            lines.append(OrderLine(
                product_id=item.product_id,
                name=product["name"],
                quantity=item.quantity,
                unit_price=unit_price,
                total_price=to_money(unit_price * item.quantity),
            ))

        return lines

    async def _persist(self, user_id: int, lines: List[OrderLine], total: Decimal) -> int:
        async with self.store.transaction() as tx:
            order_id = await tx.insert_order(user_id, total, OrderStatus.PENDING.value)

            for line in lines:
                await tx.insert_order_item(
                    order_id, line.product_id, line.quantity, line.unit_price, line.total_price
                )

            # Row locks are taken in ascending product id order.
            for product_id, (name, quantity) in sorted(self._stock_demand(lines).items()):
                if not await tx.decrement_stock(product_id, quantity):
                    self.logger.warning(
                        "Stock decrement lost a race",
                        product_id=product_id,
                        quantity=quantity
                    )
                    raise BusinessRuleError(
                        f"Insufficient stock for product {name}",
                        details={"product_id": product_id}
                    )

        return order_id

    @staticmethod
    def _stock_demand(lines: List[OrderLine]) -> Dict[int, Tuple[str, int]]:
        """Total quantity per product across all lines."""
        demand: Dict[int, Tuple[str, int]] = {}
        for line in lines:
            _, quantity = demand.get(line.product_id, (line.name, 0))
            demand[line.product_id] = (line.name, quantity + line.quantity)
        return demand

    async def _invalidate(self, user_id: int, lines: List[OrderLine]):
        """Drop cache entries that show the old stock or order history."""
        keys = [dashboard_key(user_id)]
        keys.extend(product_key(product_id) for product_id in dict.fromkeys(line.product_id for line in lines))
        await self.cache.delete_many(keys)
        await self.cache.invalidate_index(PRODUCTS_INDEX)
        await self.cache.invalidate_index(order_list_index(user_id))
