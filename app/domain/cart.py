"""Cart domain types."""
from __future__ import annotations

import time
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any

from app.core.order_math import EMPTY_BREAKDOWN, PriceBreakdown, to_money


@dataclass
class CartLine:
    """Single line in a cart with the catalog snapshot last seen for it."""

    menu_item_id: str
    restaurant_id: str
    quantity: int
    name: str
    price: Decimal
    image: str = ""
    special_instructions: str | None = None
    is_available: bool = True
    added_at: float = field(default_factory=time.time)

    @property
    def line_total(self) -> Decimal:
        return to_money(self.price * self.quantity)

    def to_dict(self) -> dict[str, Any]:
        return {
            "menuItemId": self.menu_item_id,
            "restaurantId": self.restaurant_id,
            "quantity": int(self.quantity),
            "name": self.name,
            "price": str(self.price),
            "image": self.image,
            "specialInstructions": self.special_instructions,
            "isAvailable": bool(self.is_available),
            "addedAt": float(self.added_at),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> CartLine:
        return cls(
            menu_item_id=str(data.get("menuItemId", "")),
            restaurant_id=str(data.get("restaurantId", "")),
            quantity=int(data.get("quantity", 0)),
            name=str(data.get("name", "")),
            price=to_money(data.get("price", 0)),
            image=str(data.get("image") or ""),
            special_instructions=data.get("specialInstructions"),
            is_available=bool(data.get("isAvailable", True)),
            added_at=float(data.get("addedAt", time.time())),
        )


@dataclass
class Cart:
    user_id: str
    items: list[CartLine] = field(default_factory=list)
    totals: PriceBreakdown = EMPTY_BREAKDOWN

    @property
    def restaurant_id(self) -> str | None:
        return self.items[0].restaurant_id if self.items else None

    @property
    def subtotal(self) -> Decimal:
        return self.totals.subtotal

    @property
    def delivery_fee(self) -> Decimal:
        return self.totals.delivery_fee

    @property
    def tax(self) -> Decimal:
        return self.totals.tax

    @property
    def total(self) -> Decimal:
        return self.totals.total

    @property
    def item_count(self) -> int:
        return sum(line.quantity for line in self.items)

    def find(self, menu_item_id: str) -> CartLine | None:
        for line in self.items:
            if line.menu_item_id == menu_item_id:
                return line
        return None

    def to_dict(self) -> dict[str, Any]:
        payload = {
            "items": [
                {**line.to_dict(), "price": float(line.price), "lineTotal": float(line.line_total)}
                for line in self.items
            ],
            "itemCount": self.item_count,
            "restaurantId": self.restaurant_id,
        }
        payload.update(self.totals.to_dict())
        return payload
