"""Shared pytest fixtures: in-memory doubles for the database and payment gateway."""
from __future__ import annotations

import itertools
import json
import threading
from dataclasses import replace
from datetime import timedelta
from decimal import Decimal
from typing import Any

import pytest

from app.core.config import PaymentConfig, PricingConfig, Settings
from app.core.exceptions import DatabaseUnavailable, GatewayError, WebhookSignatureInvalid
from app.domain.notification import Notification
from app.domain.order import (
    DeliveryAddress,
    Order,
    OrderItem,
    OrderStatus,
    PaymentMethod,
    PaymentStatus,
    utcnow,
)
from app.domain.protocols import MenuItemRecord, OrderFilter, RestaurantRecord
from app.integrations.payment_service import PaymentIntentResult, RefundResult
from app.integrations.redis_cart import MemoryCartStorage
from app.services.container import build_services

_SORT_KEYS = {
    "created_asc": (lambda o: o.created_at, False),
    "created_desc": (lambda o: o.created_at, True),
    "updated_desc": (lambda o: o.updated_at, True),
    "delivered_desc": (lambda o: o.actual_delivery_time or o.created_at, True),
}


class FakeDatabase:
    """Catalog, orders, notifications and user directory kept in dicts.

    Order writes go through a threading lock so compare-and-set behaves like
    the single UPDATE statements of the real repository.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.menu_items: dict[str, MenuItemRecord] = {}
        self.restaurants: dict[str, RestaurantRecord] = {}
        self.orders: dict[str, Order] = {}
        self.notifications: list[Notification] = []
        self.roles: dict[str, list[str]] = {}
        self.fail_writes = False
        self.fail_notifications = False

    # catalog

    def add_menu_item(
        self,
        menu_item_id: str,
        price: str = "10.00",
        restaurant_id: str = "rest-1",
        name: str | None = None,
        is_available: bool = True,
    ) -> MenuItemRecord:
        record = MenuItemRecord(
            id=menu_item_id,
            restaurant_id=restaurant_id,
            name=name or f"Item {menu_item_id}",
            price=Decimal(price),
            image=f"/img/{menu_item_id}.jpg",
            is_available=is_available,
        )
        self.menu_items[menu_item_id] = record
        return record

    def set_price(self, menu_item_id: str, price: str) -> None:
        self.menu_items[menu_item_id] = replace(self.menu_items[menu_item_id], price=Decimal(price))

    def resolve_item(self, menu_item_id: str) -> MenuItemRecord | None:
        return self.menu_items.get(menu_item_id)

    def resolve_items(self, menu_item_ids: list[str]) -> dict[str, MenuItemRecord]:
        return {i: self.menu_items[i] for i in menu_item_ids if i in self.menu_items}

    def get_restaurant(self, restaurant_id: str) -> RestaurantRecord | None:
        return self.restaurants.get(restaurant_id)

    # orders

    def save_order(self, order: Order) -> Order:
        if self.fail_writes:
            raise DatabaseUnavailable("Database is unreachable")
        with self._lock:
            self.orders[order.id] = order
        return order

    def get_order(self, order_id: str) -> Order | None:
        return self.orders.get(order_id)

    def update_order(
        self, order_id: str, patch: dict[str, Any], *, expected_version: int | None = None
    ) -> Order | None:
        if self.fail_writes:
            raise DatabaseUnavailable("Database is unreachable")
        with self._lock:
            order = self.orders.get(order_id)
            if order is None:
                return None
            if expected_version is not None and order.version != expected_version:
                return None
            updated = order.evolve(**patch, version=order.version + 1, updated_at=utcnow())
            self.orders[order_id] = updated
            return updated

    def assign_delivery_partner(
        self, order_id: str, partner_id: str, allowed_statuses: tuple[str, ...]
    ) -> Order | None:
        with self._lock:
            order = self.orders.get(order_id)
            if order is None or order.delivery_partner_id is not None:
                return None
            if order.status not in allowed_statuses:
                return None
            updated = order.evolve(
                delivery_partner_id=partner_id, version=order.version + 1, updated_at=utcnow()
            )
            self.orders[order_id] = updated
            return updated

    def _matching(self, order_filter: OrderFilter) -> list[Order]:
        result = []
        for order in self.orders.values():
            if order_filter.user_id is not None and order.user_id != order_filter.user_id:
                continue
            if order_filter.restaurant_id is not None and order.restaurant_id != order_filter.restaurant_id:
                continue
            if (
                order_filter.delivery_partner_id is not None
                and order.delivery_partner_id != order_filter.delivery_partner_id
            ):
                continue
            if order_filter.statuses and order.status not in order_filter.statuses:
                continue
            if order_filter.unassigned and order.delivery_partner_id is not None:
                continue
            if order_filter.delivered_since is not None and (
                order.actual_delivery_time is None or order.actual_delivery_time < order_filter.delivered_since
            ):
                continue
            if (
                order_filter.payment_intent_id is not None
                and order.payment_intent_id != order_filter.payment_intent_id
            ):
                continue
            result.append(order)
        return result

    def list_orders(self, order_filter: OrderFilter) -> list[Order]:
        key, reverse = _SORT_KEYS[order_filter.order_by]
        orders = sorted(self._matching(order_filter), key=key, reverse=reverse)
        if order_filter.limit is not None:
            orders = orders[order_filter.offset : order_filter.offset + order_filter.limit]
        return orders

    def count_orders(self, order_filter: OrderFilter) -> int:
        return len(self._matching(order_filter))

    # notifications

    def create_notification(self, notification: Notification) -> Notification:
        if self.fail_notifications:
            raise DatabaseUnavailable("notifications table unavailable")
        self.notifications.append(notification)
        return notification

    def list_notifications(
        self, recipient_id: str, *, unread_only: bool = False, limit: int = 50
    ) -> list[Notification]:
        items = [
            n for n in reversed(self.notifications)
            if n.recipient_id == recipient_id and not (unread_only and n.is_read)
        ]
        return items[:limit]

    def mark_read(self, notification_id: str, recipient_id: str) -> bool:
        for n in self.notifications:
            if n.id == notification_id and n.recipient_id == recipient_id:
                n.is_read = True
                return True
        return False

    def mark_all_read(self, recipient_id: str) -> int:
        count = 0
        for n in self.notifications:
            if n.recipient_id == recipient_id and not n.is_read:
                n.is_read = True
                count += 1
        return count

    def unread_count(self, recipient_id: str) -> int:
        return sum(1 for n in self.notifications if n.recipient_id == recipient_id and not n.is_read)

    # users

    def list_user_ids_by_role(self, role: str) -> list[str]:
        return list(self.roles.get(role, []))

    # helpers

    def notifications_for(self, recipient_id: str) -> list[Notification]:
        return [n for n in self.notifications if n.recipient_id == recipient_id]


class FakeGateway:
    """Payment gateway double that honours refund idempotency keys."""

    def __init__(self) -> None:
        self._ids = itertools.count(1)
        self.intents: dict[str, PaymentIntentResult] = {}
        self.refunds_by_key: dict[str, RefundResult] = {}
        self.refund_calls: list[dict[str, Any]] = []
        self.created: list[dict[str, Any]] = []
        self.fail_refunds = False

    async def create_payment_intent(
        self,
        amount_minor: int,
        currency: str,
        metadata: dict[str, str],
        description: str | None = None,
    ) -> PaymentIntentResult:
        intent_id = f"pi_{next(self._ids)}"
        intent = PaymentIntentResult(
            id=intent_id,
            status="requires_payment_method",
            client_secret=f"{intent_id}_secret",
            amount=amount_minor,
            currency=currency,
            metadata=dict(metadata),
        )
        self.intents[intent_id] = intent
        self.created.append({"amount": amount_minor, "currency": currency, "metadata": dict(metadata)})
        return intent

    def set_status(self, intent_id: str, status: str) -> None:
        self.intents[intent_id] = replace(self.intents[intent_id], status=status)

    def add_intent(self, intent_id: str, status: str, order_id: str, amount: int = 5000) -> None:
        self.intents[intent_id] = PaymentIntentResult(
            id=intent_id,
            status=status,
            client_secret=f"{intent_id}_secret",
            amount=amount,
            currency="inr",
            metadata={"orderId": order_id},
        )

    async def retrieve_intent(self, payment_intent_id: str) -> PaymentIntentResult:
        return self.intents[payment_intent_id]

    async def create_refund(
        self,
        payment_intent_id: str,
        reason: str | None,
        metadata: dict[str, str],
        idempotency_key: str,
    ) -> RefundResult:
        self.refund_calls.append(
            {"payment_intent_id": payment_intent_id, "reason": reason, "idempotency_key": idempotency_key}
        )
        if self.fail_refunds:
            raise GatewayError("card_declined", operation="refund")
        if idempotency_key not in self.refunds_by_key:
            self.refunds_by_key[idempotency_key] = RefundResult(id=f"re_{next(self._ids)}", status="succeeded")
        return self.refunds_by_key[idempotency_key]

    def construct_event(self, payload: bytes, signature: str | None) -> dict[str, Any]:
        if signature != "valid-signature":
            raise WebhookSignatureInvalid("Invalid webhook signature")
        return json.loads(payload)


@pytest.fixture()
def settings() -> Settings:
    return Settings(
        database_url=None,
        db_min_connections=1,
        db_max_connections=5,
        db_pool_wait_timeout=30,
        redis_url=None,
        cart_ttl_seconds=3600,
        pricing=PricingConfig(
            delivery_fee=Decimal("2.99"),
            tax_rate=Decimal("0.08"),
            delivery_eta_minutes=30,
            max_item_quantity=10,
        ),
        payments=PaymentConfig(
            stripe_secret_key="sk_test_dummy",
            stripe_webhook_secret="whsec_dummy",
            currency="inr",
            min_amount_minor=5000,
            require_gateway_confirmation=False,
        ),
        sentry_dsn=None,
        environment="test",
        log_level="INFO",
        rate_limit_orders="10/minute",
    )


@pytest.fixture()
def db() -> FakeDatabase:
    database = FakeDatabase()
    database.roles = {"admin": ["admin-1"], "delivery": ["rider-1", "rider-2"]}
    database.restaurants["rest-1"] = RestaurantRecord(id="rest-1", name="Pasta Place", owner_id="owner-1")
    database.restaurants["rest-2"] = RestaurantRecord(id="rest-2", name="Sushi Bar", owner_id="owner-2")
    database.add_menu_item("item-x", "10.00")
    database.add_menu_item("item-y", "4.50")
    database.add_menu_item("item-sushi", "12.00", restaurant_id="rest-2")
    database.add_menu_item("item-off", "3.00", is_available=False)
    return database


@pytest.fixture()
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture()
def services(settings, db, gateway):
    return build_services(settings, db, cart_storage=MemoryCartStorage(), gateway=gateway)


@pytest.fixture()
def make_order(db):
    """Store an order directly in a given state."""
    counter = itertools.count(1)

    def _make(
        status: str = OrderStatus.PENDING,
        payment_status: str = PaymentStatus.PENDING,
        user_id: str = "user-1",
        delivery_partner_id: str | None = None,
        payment_intent_id: str | None = None,
        total: str = "24.59",
        payment_type: str = "card",
    ) -> Order:
        now = utcnow()
        order = Order(
            id=f"order-{next(counter)}",
            user_id=user_id,
            restaurant_id="rest-1",
            items=(OrderItem("item-x", "Item item-x", Decimal("10.00"), 2),),
            subtotal=Decimal("20.00"),
            delivery_fee=Decimal("2.99"),
            tax=Decimal("1.60"),
            total=Decimal(total),
            delivery_address=DeliveryAddress(street="1 Main St"),
            payment_method=PaymentMethod(type=payment_type),
            estimated_delivery_time=now + timedelta(minutes=30),
            status=status,
            payment_status=payment_status,
            delivery_partner_id=delivery_partner_id,
            payment_intent_id=payment_intent_id,
            created_at=now,
            updated_at=now,
        )
        return db.save_order(order)

    return _make
