"""
Payment gateway integration (Stripe payment intents).

The gateway is the only place that talks to Stripe. It translates SDK errors
into ``GatewayError`` and runs the blocking SDK calls in a worker thread.

To enable payments, set environment variables:
- STRIPE_SECRET_KEY
- STRIPE_WEBHOOK_SECRET (webhook endpoint only)
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from functools import partial
from typing import Any, Callable, Protocol, TypeVar

import anyio
import stripe

from app.core.exceptions import ConfigurationException, GatewayError, WebhookSignatureInvalid

logger = logging.getLogger(__name__)

T = TypeVar("T")

STRIPE_REFUND_REASONS = frozenset({"duplicate", "fraudulent", "requested_by_customer"})
DEFAULT_REFUND_REASON = "requested_by_customer"


class IntentStatus:
    """Stripe payment intent statuses the pipeline cares about."""

    SUCCEEDED = "succeeded"
    CANCELED = "canceled"
    PROCESSING = "processing"
    REQUIRES_PAYMENT_METHOD = "requires_payment_method"

    OPEN = frozenset(
        {
            "requires_payment_method",
            "requires_confirmation",
            "requires_action",
            "requires_capture",
            "processing",
        }
    )


@dataclass(frozen=True, slots=True)
class PaymentIntentResult:
    id: str
    status: str
    client_secret: str | None = None
    amount: int | None = None
    currency: str | None = None
    metadata: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class RefundResult:
    id: str
    status: str | None = None


class PaymentGateway(Protocol):
    async def create_payment_intent(
        self,
        amount_minor: int,
        currency: str,
        metadata: dict[str, str],
        description: str | None = None,
    ) -> PaymentIntentResult:
        ...

    async def retrieve_intent(self, payment_intent_id: str) -> PaymentIntentResult:
        ...

    async def create_refund(
        self,
        payment_intent_id: str,
        reason: str | None,
        metadata: dict[str, str],
        idempotency_key: str,
    ) -> RefundResult:
        ...

    def construct_event(self, payload: bytes, signature: str | None) -> dict[str, Any]:
        ...


def normalize_refund_reason(reason: str | None) -> str:
    """Stripe only accepts a fixed set of refund reasons."""
    value = (reason or "").strip().lower()
    return value if value in STRIPE_REFUND_REASONS else DEFAULT_REFUND_REASON


def _plain(obj: Any) -> dict[str, Any]:
    """Plain dict copy of a Stripe object."""
    if obj is None:
        return {}
    if hasattr(obj, "to_dict"):
        return obj.to_dict()
    return dict(obj)


def _intent_from_stripe(stripe_intent: Any) -> PaymentIntentResult:
    intent = _plain(stripe_intent)
    metadata = intent.get("metadata") or {}
    return PaymentIntentResult(
        id=intent["id"],
        status=intent["status"],
        client_secret=intent.get("client_secret"),
        amount=intent.get("amount"),
        currency=intent.get("currency"),
        metadata={str(k): str(v) for k, v in dict(metadata).items()},
    )


class StripeGateway:
    """Service for Stripe payment intents and refunds."""

    def __init__(self, api_key: str | None, webhook_secret: str | None = None):
        if not api_key:
            raise ConfigurationException("STRIPE_SECRET_KEY is not set")
        self._api_key = api_key
        self._webhook_secret = webhook_secret

    async def _call(self, operation: str, func: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        try:
            return await anyio.to_thread.run_sync(partial(func, *args, api_key=self._api_key, **kwargs))
        except stripe.StripeError as exc:
            logger.error("Stripe %s failed: %s", operation, exc)
            raise GatewayError(
                exc.user_message or str(exc) or f"Payment gateway {operation} failed",
                operation=operation,
                gateway_code=exc.code,
            ) from exc

    async def create_payment_intent(
        self,
        amount_minor: int,
        currency: str,
        metadata: dict[str, str],
        description: str | None = None,
    ) -> PaymentIntentResult:
        intent = await self._call(
            "create_intent",
            stripe.PaymentIntent.create,
            amount=amount_minor,
            currency=currency,
            description=description,
            metadata=metadata,
            automatic_payment_methods={"enabled": True},
        )
        logger.info("Stripe intent %s created for %s %s", intent["id"], amount_minor, currency)
        return _intent_from_stripe(intent)

    async def retrieve_intent(self, payment_intent_id: str) -> PaymentIntentResult:
        intent = await self._call("retrieve_intent", stripe.PaymentIntent.retrieve, payment_intent_id)
        return _intent_from_stripe(intent)

    async def create_refund(
        self,
        payment_intent_id: str,
        reason: str | None,
        metadata: dict[str, str],
        idempotency_key: str,
    ) -> RefundResult:
        refund = await self._call(
            "refund",
            stripe.Refund.create,
            payment_intent=payment_intent_id,
            reason=normalize_refund_reason(reason),
            metadata=metadata,
            idempotency_key=idempotency_key,
        )
        logger.info("Stripe refund %s issued for intent %s", refund["id"], payment_intent_id)
        return RefundResult(id=refund["id"], status=_plain(refund).get("status"))

    def construct_event(self, payload: bytes, signature: str | None) -> dict[str, Any]:
        if not self._webhook_secret:
            raise WebhookSignatureInvalid("Webhook secret is not configured")
        if not signature:
            raise WebhookSignatureInvalid("Missing Stripe-Signature header")
        try:
            event = stripe.Webhook.construct_event(payload, signature, self._webhook_secret)
        except ValueError as exc:
            raise WebhookSignatureInvalid("Invalid webhook payload") from exc
        except stripe.SignatureVerificationError as exc:
            raise WebhookSignatureInvalid("Invalid webhook signature") from exc
        obj = _plain(event["data"]["object"])
        return {
            "id": event["id"],
            "type": event["type"],
            "object": {
                "id": obj.get("id"),
                "status": obj.get("status"),
                "payment_intent": obj.get("payment_intent"),
                "metadata": {str(k): str(v) for k, v in (obj.get("metadata") or {}).items()},
                "last_payment_error": obj.get("last_payment_error"),
            },
        }
