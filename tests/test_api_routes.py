from __future__ import annotations

import json

import pytest
from fastapi.testclient import TestClient

from app.api.api_server import create_app
from app.api.rate_limit import limiter
from app.domain.order import OrderStatus, PaymentStatus

CUSTOMER = {"X-User-Id": "user-1", "X-User-Role": "user"}
OWNER = {"X-User-Id": "owner-1", "X-User-Role": "restaurant"}
RIDER = {"X-User-Id": "rider-1", "X-User-Role": "delivery"}
ADMIN = {"X-User-Id": "admin-1", "X-User-Role": "admin"}


@pytest.fixture()
def client(settings, services):
    limiter.reset()
    with TestClient(create_app(settings, services)) as test_client:
        yield test_client


def test_health(client) -> None:
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok", "environment": "test"}


def test_requests_without_identity_are_rejected(client) -> None:
    assert client.get("/api/v1/cart").status_code == 401
    assert client.get("/api/v1/cart", headers={"X-User-Id": "u", "X-User-Role": "root"}).status_code == 401


def test_cart_to_order_flow(client, db) -> None:
    response = client.post("/api/v1/cart/items", json={"menuItemId": "item-x", "quantity": 2}, headers=CUSTOMER)
    assert response.status_code == 200
    client.post("/api/v1/cart/items", json={"menuItemId": "item-y"}, headers=CUSTOMER)

    cart = client.get("/api/v1/cart", headers=CUSTOMER).json()["data"]
    assert cart["itemCount"] == 3
    assert cart["subtotal"] == 24.5
    assert cart["total"] == 29.45

    response = client.post(
        "/api/v1/cart/checkout",
        json={"deliveryAddress": {"street": "1 Main St", "city": "Pune"}, "paymentMethod": "cash"},
        headers=CUSTOMER,
    )
    assert response.status_code == 201
    order = response.json()["data"]
    assert order["status"] == OrderStatus.PENDING
    assert order["total"] == 29.45
    assert order["deliveryAddress"]["city"] == "Pune"

    assert client.get("/api/v1/cart", headers=CUSTOMER).json()["data"]["items"] == []
    assert client.get(f"/api/v1/orders/{order['id']}", headers=CUSTOMER).status_code == 200
    assert client.get(f"/api/v1/orders/{order['id']}", headers=RIDER).status_code == 403


def test_checkout_empty_cart(client) -> None:
    response = client.post("/api/v1/cart/checkout", json={}, headers=CUSTOMER)
    assert response.status_code == 400
    assert response.json()["error"] == "cart_empty"


def test_create_order_directly(client) -> None:
    response = client.post(
        "/api/v1/orders",
        json={"restaurantId": "rest-1", "items": [{"menuItemId": "item-x", "quantity": 1}], "paymentMethod": "card"},
        headers=CUSTOMER,
    )
    assert response.status_code == 201
    body = response.json()["data"]
    assert body["paymentStatus"] == PaymentStatus.PAID
    assert body["items"][0]["price"] == 10.0

    listing = client.get("/api/v1/orders", headers=CUSTOMER).json()["data"]
    assert listing["pagination"]["total"] == 1


def test_invalid_transition_reports_error_kind(client, make_order) -> None:
    order = make_order(status=OrderStatus.PENDING)
    response = client.patch(f"/api/v1/orders/{order.id}/status", json={"status": "ready"}, headers=OWNER)
    assert response.status_code == 409
    body = response.json()
    assert body["success"] is False
    assert body["error"] == "invalid_transition"


def test_unknown_status_value(client, make_order) -> None:
    order = make_order()
    response = client.patch(f"/api/v1/orders/{order.id}/status", json={"status": "teleported"}, headers=OWNER)
    assert response.status_code == 400


def test_delivery_flow_over_http(client, make_order) -> None:
    order = make_order(status=OrderStatus.READY, payment_status=PaymentStatus.PAID)

    available = client.get("/api/v1/delivery/orders/available", headers=RIDER).json()["data"]
    assert [o["id"] for o in available] == [order.id]

    assert client.post(f"/api/v1/delivery/orders/{order.id}/accept", headers=RIDER).status_code == 200
    other = client.post(
        f"/api/v1/delivery/orders/{order.id}/accept", headers={"X-User-Id": "rider-2", "X-User-Role": "delivery"}
    )
    assert other.status_code == 409
    assert other.json()["error"] == "assignment_conflict"

    client.post(f"/api/v1/delivery/orders/{order.id}/pickup", headers=RIDER)
    delivered = client.post(f"/api/v1/delivery/orders/{order.id}/deliver", headers=RIDER).json()["data"]
    assert delivered["status"] == OrderStatus.DELIVERED
    assert delivered["actualDeliveryTime"] is not None

    stats = client.get("/api/v1/delivery/stats", headers=RIDER).json()["data"]
    assert stats["todayDeliveries"] == 1
    assert stats["todayEarnings"] == 40.0

    assert client.get("/api/v1/delivery/tasks", headers=CUSTOMER).status_code == 403


def test_review_after_delivery(client, make_order) -> None:
    order = make_order(status=OrderStatus.DELIVERED)
    response = client.post(f"/api/v1/orders/{order.id}/review", json={"rating": 5}, headers=CUSTOMER)
    assert response.status_code == 200
    again = client.post(f"/api/v1/orders/{order.id}/review", json={"rating": 4}, headers=CUSTOMER)
    assert again.json()["error"] == "already_reviewed"


def test_admin_force_status(client, make_order) -> None:
    order = make_order(status=OrderStatus.PREPARING)
    assert client.put(
        f"/api/v1/admin/orders/{order.id}/status", json={"status": "cancelled"}, headers=CUSTOMER
    ).status_code == 403
    response = client.put(f"/api/v1/admin/orders/{order.id}/status", json={"status": "cancelled"}, headers=ADMIN)
    assert response.json()["data"]["status"] == OrderStatus.CANCELLED


def test_payment_intent_and_refund(client, make_order) -> None:
    order = make_order(payment_type="cash")
    intent = client.post("/api/v1/payments/intent", json={"orderId": order.id}, headers=CUSTOMER).json()["data"]
    assert intent["amount"] == 5000
    assert intent["minimumApplied"] is True

    paid = make_order(payment_status=PaymentStatus.PAID, payment_intent_id="pi_paid")
    refunded = client.post("/api/v1/payments/refund", json={"orderId": paid.id}, headers=CUSTOMER)
    assert refunded.json()["data"]["paymentStatus"] == PaymentStatus.REFUNDED
    again = client.post("/api/v1/payments/refund", json={"orderId": paid.id}, headers=CUSTOMER)
    assert again.json()["error"] == "already_refunded"


def test_webhook_signature(client, make_order) -> None:
    order = make_order(payment_type="cash", payment_intent_id="pi_hook")
    payload = json.dumps(
        {
            "id": "evt_9",
            "type": "payment_intent.succeeded",
            "object": {"id": "pi_hook", "metadata": {"orderId": order.id}},
        }
    )

    rejected = client.post("/api/v1/payments/webhook", content=payload, headers={"Stripe-Signature": "nope"})
    assert rejected.status_code == 400

    accepted = client.post(
        "/api/v1/payments/webhook", content=payload, headers={"Stripe-Signature": "valid-signature"}
    )
    assert accepted.status_code == 200
    assert accepted.json()["handled"] is True


def test_notifications_endpoints(client, make_order) -> None:
    order = make_order(status=OrderStatus.CONFIRMED)
    client.patch(f"/api/v1/orders/{order.id}/status", json={"status": "preparing"}, headers=OWNER)

    items = client.get("/api/v1/notifications", headers=CUSTOMER).json()["data"]
    assert [n["title"] for n in items] == ["Order Being Prepared"]
    assert client.get("/api/v1/notifications/unread-count", headers=CUSTOMER).json()["data"] == {"count": 1}

    assert client.post(f"/api/v1/notifications/{items[0]['id']}/read", headers=CUSTOMER).status_code == 200
    assert client.post("/api/v1/notifications/missing/read", headers=CUSTOMER).status_code == 404
    assert client.post("/api/v1/notifications/read-all", headers=CUSTOMER).json()["data"] == {"updated": 0}


def test_inline_item_with_garbage_price_is_a_validation_error(client) -> None:
    response = client.post(
        "/api/v1/orders",
        json={"restaurantId": "rest-1", "items": [{"menuItemId": "ghost", "name": "n", "price": "abc", "quantity": 1}]},
        headers=CUSTOMER,
    )
    assert response.status_code == 400
    assert response.json()["error"] == "validation_failed"
