from __future__ import annotations

from dataclasses import replace
from datetime import timedelta
from decimal import Decimal

import pytest

from app.core.exceptions import DatabaseUnavailable, ItemUnavailable, ValidationFailed
from app.domain.order import utcnow
from app.services.container import build_services
from app.integrations.redis_cart import MemoryCartStorage


async def _create(services, payment_method=None, **overrides):
    kwargs = {
        "user_id": "user-1",
        "restaurant_id": "rest-1",
        "items": [{"menuItemId": "item-x", "quantity": 2}],
        "delivery_address": {"street": "1 Main St", "city": "Pune", "state": "MH", "zipCode": "411001"},
        "payment_method": payment_method,
    }
    kwargs.update(overrides)
    return await services.orders.create_order(**kwargs)


@pytest.mark.asyncio
async def test_cash_order_starts_pending(services) -> None:
    order = await _create(services, {"type": "cash"})
    assert order.status == "pending"
    assert order.payment_status == "pending"
    assert order.total == Decimal("24.59")
    assert order.tax == Decimal("1.60")


@pytest.mark.asyncio
async def test_card_order_starts_paid(services) -> None:
    order = await _create(services, {"type": "card", "lastFour": "4242"})
    assert order.status == "pending"
    assert order.payment_status == "paid"
    assert order.payment_method.last_four == "4242"


@pytest.mark.asyncio
async def test_gateway_confirmation_mode_keeps_card_orders_pending(settings, db, gateway) -> None:
    settings.payments = replace(settings.payments, require_gateway_confirmation=True)
    services = build_services(settings, db, cart_storage=MemoryCartStorage(), gateway=gateway)
    order = await _create(services, {"type": "card"})
    assert order.payment_status == "pending"


@pytest.mark.asyncio
async def test_missing_payment_method_defaults_to_cash(services) -> None:
    order = await _create(services, None)
    assert order.payment_method.type == "cash"
    assert order.payment_method.status == "pending"


@pytest.mark.asyncio
async def test_order_prices_do_not_follow_catalog(services, db) -> None:
    order = await _create(services, {"type": "cash"})
    db.set_price("item-x", "99.00")
    stored = db.get_order(order.id)
    assert stored.total == Decimal("24.59")
    assert stored.items[0].price == Decimal("10.00")


@pytest.mark.asyncio
async def test_bare_street_address_is_normalized(services) -> None:
    order = await _create(services, delivery_address="42 Baker Street")
    assert order.delivery_address.street == "42 Baker Street"
    assert order.delivery_address.city == "Unknown"
    assert order.delivery_address.zip_code == "00000"


@pytest.mark.asyncio
async def test_missing_address_gets_placeholder(services) -> None:
    order = await _create(services, delivery_address=None)
    assert order.delivery_address.street == "No address provided"


@pytest.mark.asyncio
async def test_estimated_delivery_is_thirty_minutes_out(services) -> None:
    before = utcnow()
    order = await _create(services)
    assert before + timedelta(minutes=29) < order.estimated_delivery_time <= utcnow() + timedelta(minutes=30)
    assert order.actual_delivery_time is None


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "overrides",
    [
        {"restaurant_id": None},
        {"items": []},
        {"items": [{"menuItemId": "item-x", "quantity": 0}]},
        {"items": [{"menuItemId": "item-sushi", "quantity": 1}]},
        {"payment_method": {"type": "bitcoin"}},
        {"payment_method": {"type": "card", "lastFour": "12"}},
    ],
)
async def test_invalid_input_is_rejected(services, db, overrides) -> None:
    with pytest.raises(ValidationFailed):
        await _create(services, **overrides)
    assert db.orders == {}


@pytest.mark.asyncio
async def test_unavailable_item_rejected(services, db) -> None:
    with pytest.raises(ItemUnavailable):
        await _create(services, items=[{"menuItemId": "item-off", "quantity": 1}])
    assert db.orders == {}


@pytest.mark.asyncio
async def test_unknown_item_falls_back_to_inline_snapshot(services) -> None:
    order = await _create(
        services, items=[{"menuItemId": "legacy-1", "quantity": 1, "name": "Soup", "price": 5}]
    )
    assert order.items[0].name == "Soup"
    assert order.subtotal == Decimal("5.00")


@pytest.mark.asyncio
@pytest.mark.parametrize("price", ["abc", "NaN", "Infinity", "-1", [5]])
async def test_inline_snapshot_with_bad_price_rejected(services, db, price) -> None:
    with pytest.raises(ValidationFailed):
        await _create(services, items=[{"menuItemId": "legacy-1", "quantity": 1, "name": "Soup", "price": price}])
    assert db.orders == {}


@pytest.mark.asyncio
async def test_unknown_item_without_snapshot_rejected(services) -> None:
    with pytest.raises(ItemUnavailable):
        await _create(services, items=[{"menuItemId": "legacy-1", "quantity": 1}])


@pytest.mark.asyncio
async def test_database_outage_fails_hard(services, db) -> None:
    db.fail_writes = True
    with pytest.raises(DatabaseUnavailable):
        await _create(services)


@pytest.mark.asyncio
async def test_checkout_builds_order_and_clears_cart(services, db) -> None:
    await services.cart.add_item("user-1", "item-x", 2, special_instructions="extra cheese")
    order = await services.orders.checkout("user-1", "7 Elm Road", {"type": "cash"}, "ring twice")

    assert order.restaurant_id == "rest-1"
    assert order.total == Decimal("24.59")
    assert "ring twice" in order.special_instructions
    assert "extra cheese" in order.special_instructions
    assert db.get_order(order.id) is not None
    assert (await services.cart.get_cart("user-1")).items == []


@pytest.mark.asyncio
async def test_failed_checkout_keeps_cart(services, db) -> None:
    await services.cart.add_item("user-1", "item-x", 2)
    db.fail_writes = True
    with pytest.raises(DatabaseUnavailable):
        await services.orders.checkout("user-1")
    assert len((await services.cart.get_cart("user-1")).items) == 1


@pytest.mark.asyncio
async def test_checkout_rejects_item_disabled_after_adding(services, db) -> None:
    await services.cart.add_item("user-1", "item-x", 1)
    db.menu_items["item-x"] = replace(db.menu_items["item-x"], is_available=False)
    with pytest.raises(ItemUnavailable):
        await services.orders.checkout("user-1")
    assert db.orders == {}
