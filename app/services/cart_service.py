"""Per-user shopping cart.

Every mutation runs under the storage's per-user lock and re-resolves the
catalog price of every line, so totals never reflect a stale price.
"""
from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable, TypeVar

from app.core.async_db import as_async
from app.core.config import PricingConfig
from app.core.exceptions import CartEmpty, DatabaseUnavailable, ItemUnavailable, ValidationFailed
from app.core.order_math import EMPTY_BREAKDOWN, calc_breakdown, calc_items_total
from app.core.sentry_integration import capture_exception
from app.domain.cart import Cart, CartLine
from app.integrations.redis_cart import CartStorage

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _parse_quantity(value: Any) -> int:
    if isinstance(value, bool):
        raise ValidationFailed("quantity must be an integer")
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationFailed("quantity must be an integer") from None


class CartManager:
    def __init__(self, storage: CartStorage, catalog: Any, pricing: PricingConfig):
        self._storage = storage
        self._catalog = as_async(catalog)
        self._pricing = pricing

    @property
    def max_quantity(self) -> int:
        return self._pricing.max_item_quantity

    def _build(self, user_id: str, lines: list[CartLine]) -> Cart:
        priced = [(line.price, line.quantity) for line in lines if line.is_available]
        if not lines:
            return Cart(user_id=user_id, items=[], totals=EMPTY_BREAKDOWN)
        totals = calc_breakdown(
            calc_items_total(priced),
            delivery_fee=self._pricing.delivery_fee,
            tax_rate=self._pricing.tax_rate,
        )
        return Cart(user_id=user_id, items=lines, totals=totals)

    async def _reprice(self, lines: list[CartLine]) -> list[CartLine]:
        """Refresh name/price/image/availability of every line from the catalog."""
        if not lines:
            return lines
        records = await self._catalog.resolve_items([line.menu_item_id for line in lines])
        for line in lines:
            record = records.get(line.menu_item_id)
            if record is None:
                line.is_available = False
                continue
            line.name = record.name
            line.price = record.price
            line.image = record.image
            line.is_available = record.is_available
        return lines

    async def _resolve_available(self, menu_item_id: str):
        record = await self._catalog.resolve_item(menu_item_id)
        if record is None or not record.is_available:
            raise ItemUnavailable(menu_item_id)
        return record

    async def get_cart(self, user_id: str) -> Cart:
        lines = await self._storage.load(user_id)
        return self._build(user_id, lines)

    async def add_item(
        self,
        user_id: str,
        menu_item_id: str,
        quantity: Any = 1,
        special_instructions: str | None = None,
    ) -> Cart:
        quantity = _parse_quantity(quantity)
        if quantity < 1:
            raise ValidationFailed("quantity must be at least 1")

        async with self._storage.user_lock(user_id):
            record = await self._resolve_available(menu_item_id)
            lines = await self._storage.load(user_id)
            if lines and lines[0].restaurant_id != record.restaurant_id:
                raise ValidationFailed(
                    "Cart already contains items from another restaurant; clear it first",
                    restaurant_id=lines[0].restaurant_id,
                )

            line = next((item for item in lines if item.menu_item_id == menu_item_id), None)
            if line is None:
                lines.append(
                    CartLine(
                        menu_item_id=menu_item_id,
                        restaurant_id=record.restaurant_id,
                        quantity=min(quantity, self.max_quantity),
                        name=record.name,
                        price=record.price,
                        image=record.image,
                        special_instructions=special_instructions,
                    )
                )
            else:
                line.quantity = min(line.quantity + quantity, self.max_quantity)
                if special_instructions is not None:
                    line.special_instructions = special_instructions

            lines = await self._reprice(lines)
            await self._storage.save(user_id, lines)

        logger.debug("Cart %s: added %s x%s", user_id, menu_item_id, quantity)
        return self._build(user_id, lines)

    async def set_item_quantity(self, user_id: str, menu_item_id: str, quantity: Any) -> Cart:
        quantity = _parse_quantity(quantity)
        if quantity > self.max_quantity:
            raise ValidationFailed(f"quantity must not exceed {self.max_quantity}")

        async with self._storage.user_lock(user_id):
            lines = await self._storage.load(user_id)
            line = next((item for item in lines if item.menu_item_id == menu_item_id), None)
            if quantity <= 0:
                lines = [item for item in lines if item.menu_item_id != menu_item_id]
            elif line is not None:
                line.quantity = quantity
            else:
                record = await self._resolve_available(menu_item_id)
                if lines and lines[0].restaurant_id != record.restaurant_id:
                    raise ValidationFailed(
                        "Cart already contains items from another restaurant; clear it first",
                        restaurant_id=lines[0].restaurant_id,
                    )
                lines.append(
                    CartLine(
                        menu_item_id=menu_item_id,
                        restaurant_id=record.restaurant_id,
                        quantity=quantity,
                        name=record.name,
                        price=record.price,
                        image=record.image,
                    )
                )

            lines = await self._reprice(lines)
            await self._storage.save(user_id, lines)
        return self._build(user_id, lines)

    async def remove_item(self, user_id: str, menu_item_id: str) -> Cart:
        async with self._storage.user_lock(user_id):
            lines = await self._storage.load(user_id)
            remaining = [item for item in lines if item.menu_item_id != menu_item_id]
            if len(remaining) != len(lines):
                remaining = await self._reprice(remaining)
                await self._storage.save(user_id, remaining)
        return self._build(user_id, remaining)

    async def clear(self, user_id: str) -> Cart:
        async with self._storage.user_lock(user_id):
            await self._storage.delete(user_id)
        return self._build(user_id, [])

    async def checkout(self, user_id: str, place_order: Callable[[list[CartLine]], Awaitable[T]]) -> T:
        """Hand the current lines to ``place_order`` and clear the cart once it returns."""
        async with self._storage.user_lock(user_id):
            lines = await self._storage.load(user_id)
            if not lines:
                raise CartEmpty(user_id)
            for line in await self._reprice(lines):
                if not line.is_available:
                    raise ItemUnavailable(line.menu_item_id)
            result = await place_order(lines)
            try:
                await self._storage.delete(user_id)
            except DatabaseUnavailable as exc:
                # The order is already persisted.
                logger.error("Order placed but cart %s could not be cleared: %s", user_id, exc)
                capture_exception(exc, user_id=user_id)
        logger.info("Cart %s checked out", user_id)
        return result
