"""Payment reconciliation between orders and the payment gateway.

Order payment fields are written only after the gateway has answered, so an
order never shows a payment state the gateway did not reach. Refunds carry
the idempotency key ``refund_<order_id>``: a retry after a partial failure
gets the original refund back from the gateway and finishes the order
update.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from app.core.async_db import as_async
from app.core.config import PaymentConfig
from app.core.exceptions import (
    AlreadyPaid,
    AlreadyRefunded,
    Forbidden,
    NotRefundable,
    PaymentNotSucceeded,
    ValidationFailed,
)
from app.core.order_math import gateway_amount, to_minor_units
from app.domain.order import Actor, ActorRole, Order, OrderStatus, PaymentStatus
from app.domain.protocols import OrderFilter
from app.integrations.payment_service import IntentStatus, PaymentGateway
from app.services.notifications import NotificationDispatcher
from app.services.order_state import OrderStateMachine, append_history

logger = logging.getLogger(__name__)

PAYMENTS_ACTOR = Actor.system("payments")


def refund_idempotency_key(order_id: str) -> str:
    return f"refund_{order_id}"


@dataclass(frozen=True, slots=True)
class PaymentIntentInfo:
    client_secret: str | None
    payment_intent_id: str
    amount: int
    order_amount: int
    currency: str
    minimum_applied: bool

    def to_dict(self) -> dict[str, Any]:
        return {
            "clientSecret": self.client_secret,
            "paymentIntentId": self.payment_intent_id,
            "amount": self.amount,
            "orderAmount": self.order_amount,
            "currency": self.currency,
            "minimumApplied": self.minimum_applied,
        }


class PaymentReconciliation:
    def __init__(
        self,
        orders: Any,
        gateway: PaymentGateway,
        state_machine: OrderStateMachine,
        notifier: NotificationDispatcher,
        config: PaymentConfig,
    ):
        self._orders = as_async(orders)
        self._gateway = gateway
        self._state = state_machine
        self._notifier = notifier
        self._config = config

    @staticmethod
    def _check_payer(order: Order, actor: Actor | None) -> None:
        if actor is None or actor.role in (ActorRole.ADMIN, ActorRole.SYSTEM):
            return
        if order.user_id != actor.id:
            raise Forbidden("Not allowed to manage payment for this order")

    @staticmethod
    def _check_payable(order: Order) -> None:
        # Card orders may be pre-marked paid; they stay payable until confirmed.
        if order.payment_status == PaymentStatus.REFUNDED:
            raise AlreadyRefunded(f"Order {order.id} was already refunded")
        if order.status == OrderStatus.CANCELLED:
            raise ValidationFailed("Cannot pay for a cancelled order")
        if order.payment_status == PaymentStatus.PAID and order.status != OrderStatus.PENDING:
            raise AlreadyPaid(f"Order {order.id} is already paid")

    async def create_intent(self, order_id: str, actor: Actor | None = None) -> PaymentIntentInfo:
        order = await self._state.load(order_id)
        self._check_payer(order, actor)
        self._check_payable(order)

        amount, minimum_applied = gateway_amount(order.total, self._config.min_amount_minor)
        order_amount = to_minor_units(order.total)
        currency = self._config.currency

        if order.payment_intent_id:
            existing = await self._gateway.retrieve_intent(order.payment_intent_id)
            if existing.status in IntentStatus.OPEN and existing.amount == amount:
                logger.info("Reusing open intent %s for order %s", existing.id, order_id)
                return PaymentIntentInfo(
                    client_secret=existing.client_secret,
                    payment_intent_id=existing.id,
                    amount=amount,
                    order_amount=order_amount,
                    currency=existing.currency or currency,
                    minimum_applied=minimum_applied,
                )

        intent = await self._gateway.create_payment_intent(
            amount,
            currency,
            {"orderId": order.id, "userId": order.user_id},
            description=f"Order {order.id}",
        )
        if minimum_applied:
            logger.info(
                "Order %s total %s below gateway minimum, charging %s minor units", order_id, order.total, amount
            )

        def change(current: Order) -> dict[str, Any] | None:
            self._check_payable(current)
            return {"payment_intent_id": intent.id}

        await self._state.mutate(order_id, change)
        return PaymentIntentInfo(
            client_secret=intent.client_secret,
            payment_intent_id=intent.id,
            amount=amount,
            order_amount=order_amount,
            currency=currency,
            minimum_applied=minimum_applied,
        )

    async def confirm_payment(self, order_id: str, payment_intent_id: str, actor: Actor | None = None) -> Order:
        if not payment_intent_id:
            raise ValidationFailed("paymentIntentId is required")
        order = await self._state.load(order_id)
        self._check_payer(order, actor)
        if order.payment_intent_id and order.payment_intent_id != payment_intent_id:
            raise ValidationFailed("Payment intent does not belong to this order")
        if order.payment_status == PaymentStatus.PAID and order.status != OrderStatus.PENDING:
            return order

        intent = await self._gateway.retrieve_intent(payment_intent_id)
        if intent.metadata.get("orderId") not in (None, order_id):
            raise ValidationFailed("Payment intent does not belong to this order")
        if intent.status != IntentStatus.SUCCEEDED:
            logger.info("Order %s payment not succeeded yet: %s", order_id, intent.status)
            raise PaymentNotSucceeded(intent.status)

        return await self._record_success(order_id, payment_intent_id)

    async def _record_success(self, order_id: str, payment_intent_id: str) -> Order:
        def change(order: Order) -> dict[str, Any] | None:
            if order.payment_status == PaymentStatus.REFUNDED:
                raise AlreadyRefunded(f"Order {order_id} was already refunded")
            if order.status == OrderStatus.PENDING:
                return {
                    "status": OrderStatus.CONFIRMED,
                    "payment_status": PaymentStatus.PAID,
                    "payment_intent_id": payment_intent_id,
                    "status_history": append_history(
                        order, OrderStatus.CONFIRMED, PAYMENTS_ACTOR, "Payment confirmed"
                    ),
                }
            if order.payment_status == PaymentStatus.PAID:
                return None
            logger.warning(
                "Payment succeeded for order %s in status %s; recording payment only", order_id, order.status
            )
            return {"payment_status": PaymentStatus.PAID, "payment_intent_id": payment_intent_id}

        before, after = await self._state.mutate(order_id, change)
        if before.status == OrderStatus.PENDING and after.status == OrderStatus.CONFIRMED:
            logger.info("Order %s confirmed after payment %s", order_id, payment_intent_id)
            await self._notifier.order_status_changed(after)
        return after

    async def process_refund(self, order_id: str, reason: str | None = None, actor: Actor | None = None) -> Order:
        order = await self._state.load(order_id)
        self._check_payer(order, actor)
        if order.payment_status == PaymentStatus.REFUNDED:
            raise AlreadyRefunded(f"Order {order_id} is already refunded")
        if order.payment_status != PaymentStatus.PAID or not order.payment_intent_id:
            raise NotRefundable("Order has no captured payment to refund")

        refund = await self._gateway.create_refund(
            order.payment_intent_id,
            reason,
            {"orderId": order.id, "userId": order.user_id},
            idempotency_key=refund_idempotency_key(order.id),
        )

        before, after = await self._state.mutate(order_id, lambda current: self._refund_patch(current, refund.id))
        if before.payment_status == PaymentStatus.REFUNDED:
            # Refund already recorded (gateway webhook won the race).
            return after
        logger.info("Order %s refunded (refund %s)", order_id, refund.id)
        await self._notifier.refund_processed(after)
        return after

    @staticmethod
    def _refund_patch(order: Order, refund_id: str | None, note: str = "Payment refunded") -> dict[str, Any] | None:
        if order.payment_status == PaymentStatus.REFUNDED:
            if refund_id and not order.refund_id:
                return {"refund_id": refund_id}
            return None
        patch: dict[str, Any] = {"payment_status": PaymentStatus.REFUNDED}
        if refund_id:
            patch["refund_id"] = refund_id
        if order.status != OrderStatus.CANCELLED:
            patch["status"] = OrderStatus.CANCELLED
            patch["status_history"] = append_history(order, OrderStatus.CANCELLED, PAYMENTS_ACTOR, note)
        return patch

    # Webhooks

    async def _order_for_event(self, obj: dict[str, Any]) -> Order | None:
        order_id = (obj.get("metadata") or {}).get("orderId")
        if order_id:
            return await self._orders.get_order(order_id)
        intent_id = obj.get("payment_intent") or obj.get("id")
        if not intent_id:
            return None
        matches = await self._orders.list_orders(OrderFilter(payment_intent_id=intent_id, limit=1))
        return matches[0] if matches else None

    async def handle_webhook(self, payload: bytes, signature: str | None) -> dict[str, Any]:
        event = self._gateway.construct_event(payload, signature)
        event_type = event["type"]
        obj = event["object"]

        handlers = {
            "payment_intent.succeeded": self._on_intent_succeeded,
            "payment_intent.payment_failed": self._on_intent_failed,
            "charge.refunded": self._on_charge_refunded,
        }
        handler = handlers.get(event_type)
        if handler is None:
            logger.debug("Ignoring webhook event %s (%s)", event["id"], event_type)
            return {"received": True, "handled": False, "type": event_type}

        order = await self._order_for_event(obj)
        if order is None:
            logger.warning("Webhook %s (%s) does not match any order", event["id"], event_type)
            return {"received": True, "handled": False, "type": event_type}

        await handler(order, obj)
        return {"received": True, "handled": True, "type": event_type, "orderId": order.id}

    async def _on_intent_succeeded(self, order: Order, obj: dict[str, Any]) -> None:
        if order.payment_status == PaymentStatus.REFUNDED:
            logger.warning("Ignoring late payment success for refunded order %s", order.id)
            return
        await self._record_success(order.id, obj["id"])

    async def _on_intent_failed(self, order: Order, obj: dict[str, Any]) -> None:
        def change(current: Order) -> dict[str, Any] | None:
            if current.payment_status not in (PaymentStatus.PENDING, PaymentStatus.FAILED):
                return None
            if current.payment_intent_id and current.payment_intent_id != obj["id"]:
                return None
            return {"payment_status": PaymentStatus.FAILED, "payment_intent_id": obj["id"]}

        before, after = await self._state.mutate(order.id, change)
        if before.version == after.version:
            return
        error = obj.get("last_payment_error") or {}
        logger.info("Order %s payment failed: %s", order.id, error.get("message"))
        await self._notifier.payment_failed(after, error.get("message"))

    async def _on_charge_refunded(self, order: Order, obj: dict[str, Any]) -> None:
        if order.payment_status != PaymentStatus.PAID:
            return
        before, after = await self._state.mutate(
            order.id, lambda current: self._refund_patch(current, None, "Refund reported by gateway")
        )
        if before.version != after.version:
            logger.warning("Order %s refund recorded from webhook", order.id)
            await self._notifier.refund_processed(after)
