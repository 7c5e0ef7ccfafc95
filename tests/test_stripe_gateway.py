from __future__ import annotations

import hashlib
import hmac
import json
import time

import pytest
import stripe

from app.core.exceptions import GatewayError, WebhookSignatureInvalid
from app.integrations.payment_service import StripeGateway, _intent_from_stripe

WEBHOOK_SECRET = "whsec_test_secret"


def _stripe_intent(**overrides) -> stripe.PaymentIntent:
    values = {
        "id": "pi_1",
        "object": "payment_intent",
        "status": "succeeded",
        "client_secret": "pi_1_secret_abc",
        "amount": 5000,
        "currency": "inr",
        "metadata": {"orderId": "o1", "userId": "u1"},
    }
    values.update(overrides)
    return stripe.PaymentIntent.construct_from(values, "sk_test")


def _signed(payload: str, secret: str = WEBHOOK_SECRET) -> str:
    timestamp = int(time.time())
    digest = hmac.new(secret.encode(), f"{timestamp}.{payload}".encode(), hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={digest}"


def test_intent_conversion_reads_sdk_objects() -> None:
    result = _intent_from_stripe(_stripe_intent())
    assert result.id == "pi_1"
    assert result.status == "succeeded"
    assert result.client_secret == "pi_1_secret_abc"
    assert result.amount == 5000
    assert result.metadata == {"orderId": "o1", "userId": "u1"}


def test_intent_conversion_without_optional_fields() -> None:
    result = _intent_from_stripe(stripe.PaymentIntent.construct_from({"id": "pi_2", "status": "processing"}, "sk"))
    assert result.client_secret is None
    assert result.metadata == {}


@pytest.mark.asyncio
async def test_create_and_retrieve_intent(monkeypatch) -> None:
    calls = []

    def fake_create(**kwargs):
        calls.append(kwargs)
        return _stripe_intent(status="requires_payment_method")

    monkeypatch.setattr(stripe.PaymentIntent, "create", fake_create)
    monkeypatch.setattr(stripe.PaymentIntent, "retrieve", lambda intent_id, **kwargs: _stripe_intent(id=intent_id))

    gateway = StripeGateway("sk_test")
    created = await gateway.create_payment_intent(5000, "inr", {"orderId": "o1"}, description="Order o1")
    fetched = await gateway.retrieve_intent("pi_9")

    assert created.status == "requires_payment_method"
    assert calls[0]["api_key"] == "sk_test"
    assert calls[0]["metadata"] == {"orderId": "o1"}
    assert fetched.id == "pi_9"
    assert fetched.status == "succeeded"


@pytest.mark.asyncio
async def test_refund_passes_idempotency_key(monkeypatch) -> None:
    calls = []

    def fake_refund(**kwargs):
        calls.append(kwargs)
        return stripe.Refund.construct_from({"id": "re_1", "object": "refund", "status": "succeeded"}, "sk")

    monkeypatch.setattr(stripe.Refund, "create", fake_refund)
    refund = await StripeGateway("sk_test").create_refund("pi_1", "changed my mind", {}, idempotency_key="refund_o1")

    assert refund.id == "re_1"
    assert refund.status == "succeeded"
    assert calls[0]["idempotency_key"] == "refund_o1"
    assert calls[0]["reason"] == "requested_by_customer"


@pytest.mark.asyncio
async def test_sdk_errors_become_gateway_errors(monkeypatch) -> None:
    def fake_retrieve(intent_id, **kwargs):
        raise stripe.InvalidRequestError("No such payment_intent", "id", code="resource_missing")

    monkeypatch.setattr(stripe.PaymentIntent, "retrieve", fake_retrieve)
    with pytest.raises(GatewayError):
        await StripeGateway("sk_test").retrieve_intent("pi_missing")


def test_construct_event_from_signed_payload() -> None:
    payload = json.dumps(
        {
            "id": "evt_1",
            "object": "event",
            "type": "payment_intent.payment_failed",
            "data": {
                "object": {
                    "id": "pi_1",
                    "object": "payment_intent",
                    "status": "requires_payment_method",
                    "metadata": {"orderId": "o1"},
                    "last_payment_error": {"message": "Your card was declined."},
                }
            },
        }
    )
    gateway = StripeGateway("sk_test", WEBHOOK_SECRET)
    event = gateway.construct_event(payload.encode(), _signed(payload))

    assert event["id"] == "evt_1"
    assert event["type"] == "payment_intent.payment_failed"
    assert event["object"]["id"] == "pi_1"
    assert event["object"]["metadata"] == {"orderId": "o1"}
    assert event["object"]["last_payment_error"]["message"] == "Your card was declined."


def test_construct_event_rejects_wrong_secret() -> None:
    payload = json.dumps({"id": "evt_1", "object": "event", "type": "x", "data": {"object": {}}})
    gateway = StripeGateway("sk_test", WEBHOOK_SECRET)
    with pytest.raises(WebhookSignatureInvalid):
        gateway.construct_event(payload.encode(), _signed(payload, secret="whsec_other"))
    with pytest.raises(WebhookSignatureInvalid):
        StripeGateway("sk_test").construct_event(payload.encode(), _signed(payload))
