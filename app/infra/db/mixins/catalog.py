"""
Catalog lookups (menu items and restaurants).

The catalog itself is managed elsewhere; the order pipeline only reads it.
"""
from __future__ import annotations

from app.core.order_math import to_money
from app.domain.protocols import MenuItemRecord, RestaurantRecord


def _menu_item(row) -> MenuItemRecord:
    return MenuItemRecord(
        id=str(row["menu_item_id"]),
        restaurant_id=str(row["restaurant_id"]),
        name=row["name"],
        price=to_money(row["price"]),
        image=row.get("image") or "",
        is_available=bool(row.get("is_available", True)),
    )


class CatalogMixin:
    """Mixin for read-only catalog access."""

    def resolve_item(self, menu_item_id: str) -> MenuItemRecord | None:
        with self.get_connection() as conn:
            row = conn.execute(
                "SELECT * FROM menu_items WHERE menu_item_id = %s", (menu_item_id,)
            ).fetchone()
        return _menu_item(row) if row else None

    def resolve_items(self, menu_item_ids: list[str]) -> dict[str, MenuItemRecord]:
        if not menu_item_ids:
            return {}
        with self.get_connection() as conn:
            rows = conn.execute(
                "SELECT * FROM menu_items WHERE menu_item_id = ANY(%s)", (list(menu_item_ids),)
            ).fetchall()
        return {str(row["menu_item_id"]): _menu_item(row) for row in rows}

    def get_restaurant(self, restaurant_id: str) -> RestaurantRecord | None:
        with self.get_connection() as conn:
            row = conn.execute(
                "SELECT restaurant_id, name, owner_id FROM restaurants WHERE restaurant_id = %s",
                (restaurant_id,),
            ).fetchone()
        if not row:
            return None
        return RestaurantRecord(
            id=str(row["restaurant_id"]), name=row["name"], owner_id=row.get("owner_id")
        )
