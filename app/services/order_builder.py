"""Turns item selections (or a cart) into a persisted order with frozen prices."""
from __future__ import annotations

import logging
import uuid
from datetime import timedelta
from decimal import Decimal, InvalidOperation
from typing import Any

from app.core.async_db import as_async
from app.core.config import PaymentConfig, PricingConfig
from app.core.exceptions import ItemUnavailable, ValidationFailed
from app.core.order_math import calc_breakdown, calc_items_total, to_money
from app.domain.cart import CartLine
from app.domain.order import (
    ActorRole,
    Customization,
    DeliveryAddress,
    Order,
    OrderItem,
    OrderStatus,
    PaymentMethod,
    PaymentStatus,
    StatusChange,
    utcnow,
)
from app.services.cart_service import CartManager

logger = logging.getLogger(__name__)


def _new_order_id() -> str:
    return uuid.uuid4().hex


def _inline_price(raw: Any) -> Decimal:
    try:
        price = to_money(raw)
    except (InvalidOperation, TypeError, ValueError):
        raise ValidationFailed(f"Invalid price: {raw!r}") from None
    if not price.is_finite() or price < 0:
        raise ValidationFailed(f"Invalid price: {raw!r}")
    return price


class OrderBuilder:
    def __init__(
        self,
        orders: Any,
        catalog: Any,
        pricing: PricingConfig,
        payments: PaymentConfig,
        cart: CartManager | None = None,
    ):
        self._orders = as_async(orders)
        self._catalog = as_async(catalog)
        self._pricing = pricing
        self._payments = payments
        self._cart = cart

    def _quantity(self, raw: Any) -> int:
        try:
            quantity = int(raw if raw is not None else 1)
        except (TypeError, ValueError):
            raise ValidationFailed("quantity must be an integer") from None
        if quantity < 1 or quantity > self._pricing.max_item_quantity:
            raise ValidationFailed(f"quantity must be between 1 and {self._pricing.max_item_quantity}")
        return quantity

    async def _snapshot_items(self, restaurant_id: str, items: list[dict[str, Any]]) -> list[OrderItem]:
        ids = [str(item.get("menuItemId") or "") for item in items]
        if not all(ids):
            raise ValidationFailed("Every item needs a menuItemId")
        records = await self._catalog.resolve_items(ids)

        snapshot = []
        for menu_item_id, item in zip(ids, items):
            quantity = self._quantity(item.get("quantity"))
            record = records.get(menu_item_id)
            if record is not None:
                if not record.is_available:
                    raise ItemUnavailable(menu_item_id)
                if record.restaurant_id != restaurant_id:
                    raise ValidationFailed(
                        f"Menu item {menu_item_id} does not belong to restaurant {restaurant_id}"
                    )
                name, price, image = record.name, record.price, record.image
            elif item.get("price") is not None and item.get("name"):
                # Catalog miss: accept the caller's inline snapshot.
                logger.warning("Menu item %s not in catalog, using inline price", menu_item_id)
                name, price, image = str(item["name"]), _inline_price(item["price"]), str(item.get("image") or "")
            else:
                raise ItemUnavailable(menu_item_id)

            snapshot.append(
                OrderItem(
                    menu_item_id=menu_item_id,
                    name=name,
                    price=price,
                    quantity=quantity,
                    image=image,
                    customizations=tuple(
                        Customization.from_dict(c) for c in item.get("customizations") or ()
                    ),
                )
            )
        return snapshot

    async def create_order(
        self,
        user_id: str,
        restaurant_id: str | None,
        items: list[dict[str, Any]] | None,
        delivery_address: Any = None,
        payment_method: Any = None,
        special_instructions: str | None = None,
    ) -> Order:
        if not restaurant_id:
            raise ValidationFailed("restaurantId is required")
        if not items:
            raise ValidationFailed("Order must contain at least one item")
        try:
            address = DeliveryAddress.coerce(delivery_address)
            method = PaymentMethod.coerce(payment_method)
        except ValueError as exc:
            raise ValidationFailed(str(exc)) from exc

        order_items = await self._snapshot_items(str(restaurant_id), items)
        breakdown = calc_breakdown(
            calc_items_total((item.price, item.quantity) for item in order_items),
            delivery_fee=self._pricing.delivery_fee,
            tax_rate=self._pricing.tax_rate,
        )

        now = utcnow()
        payment_status = PaymentStatus.initial_for_method(
            method.type, require_confirmation=self._payments.require_gateway_confirmation
        )
        order = Order(
            id=_new_order_id(),
            user_id=str(user_id),
            restaurant_id=str(restaurant_id),
            items=tuple(order_items),
            subtotal=breakdown.subtotal,
            delivery_fee=breakdown.delivery_fee,
            tax=breakdown.tax,
            total=breakdown.total,
            delivery_address=address,
            payment_method=method,
            estimated_delivery_time=now + timedelta(minutes=self._pricing.delivery_eta_minutes),
            status=OrderStatus.PENDING,
            payment_status=payment_status,
            special_instructions=special_instructions,
            status_history=(StatusChange(OrderStatus.PENDING, str(user_id), ActorRole.USER, now, "Order placed"),),
            created_at=now,
            updated_at=now,
        )
        saved = await self._orders.save_order(order)
        logger.info(
            "Order %s created: user=%s restaurant=%s total=%s payment=%s/%s",
            saved.id,
            user_id,
            restaurant_id,
            saved.total,
            method.type,
            payment_status,
        )
        return saved

    async def checkout(
        self,
        user_id: str,
        delivery_address: Any = None,
        payment_method: Any = None,
        special_instructions: str | None = None,
    ) -> Order:
        """Build an order from the user's cart and clear the cart."""
        if self._cart is None:
            raise RuntimeError("OrderBuilder was created without a cart manager")

        async def place(lines: list[CartLine]) -> Order:
            notes = [f"{line.name}: {line.special_instructions}" for line in lines if line.special_instructions]
            if special_instructions:
                notes.insert(0, special_instructions)
            return await self.create_order(
                user_id,
                lines[0].restaurant_id,
                [{"menuItemId": line.menu_item_id, "quantity": line.quantity} for line in lines],
                delivery_address,
                payment_method,
                "\n".join(notes) or None,
            )

        return await self._cart.checkout(user_id, place)
