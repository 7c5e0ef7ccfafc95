"""
Collaborator protocols consumed by the order pipeline.

Repositories are synchronous (psycopg pool underneath); services reach them
through ``AsyncDBProxy`` so they never block the event loop.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any, Protocol, runtime_checkable

from app.domain.notification import Notification
from app.domain.order import Order


@dataclass(frozen=True, slots=True)
class MenuItemRecord:
    id: str
    restaurant_id: str
    name: str
    price: Decimal
    image: str = ""
    is_available: bool = True


@dataclass(frozen=True, slots=True)
class RestaurantRecord:
    id: str
    name: str
    owner_id: str | None = None


@dataclass(frozen=True, slots=True)
class OrderFilter:
    user_id: str | None = None
    restaurant_id: str | None = None
    delivery_partner_id: str | None = None
    statuses: tuple[str, ...] = ()
    unassigned: bool = False
    delivered_since: datetime | None = None
    payment_intent_id: str | None = None
    order_by: str = "created_desc"
    limit: int | None = None
    offset: int = 0


ORDER_BY_CHOICES = ("created_asc", "created_desc", "updated_desc", "delivered_desc")


@runtime_checkable
class CatalogStore(Protocol):
    def resolve_item(self, menu_item_id: str) -> MenuItemRecord | None:
        ...

    def resolve_items(self, menu_item_ids: list[str]) -> dict[str, MenuItemRecord]:
        ...

    def get_restaurant(self, restaurant_id: str) -> RestaurantRecord | None:
        ...


@runtime_checkable
class OrdersRepository(Protocol):
    def save_order(self, order: Order) -> Order:
        ...

    def get_order(self, order_id: str) -> Order | None:
        ...

    def update_order(
        self, order_id: str, patch: dict[str, Any], *, expected_version: int | None = None
    ) -> Order | None:
        """Apply ``patch`` and bump the version; None when the version check fails."""
        ...

    def assign_delivery_partner(
        self, order_id: str, partner_id: str, allowed_statuses: tuple[str, ...]
    ) -> Order | None:
        """Atomic compare-and-set of an unset rider; None when it lost the race."""
        ...

    def list_orders(self, order_filter: OrderFilter) -> list[Order]:
        ...

    def count_orders(self, order_filter: OrderFilter) -> int:
        ...


@runtime_checkable
class NotificationStore(Protocol):
    def create_notification(self, notification: Notification) -> Notification:
        ...

    def list_notifications(
        self, recipient_id: str, *, unread_only: bool = False, limit: int = 50
    ) -> list[Notification]:
        ...

    def mark_read(self, notification_id: str, recipient_id: str) -> bool:
        ...

    def mark_all_read(self, recipient_id: str) -> int:
        ...

    def unread_count(self, recipient_id: str) -> int:
        ...


@runtime_checkable
class UserDirectory(Protocol):
    def list_user_ids_by_role(self, role: str) -> list[str]:
        ...
