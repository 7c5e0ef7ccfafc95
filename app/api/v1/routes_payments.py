from __future__ import annotations

from fastapi import APIRouter, Depends, Header, Request

from app.domain.order import Actor

from .common import (
    ConfirmPaymentRequest,
    PaymentIntentRequest,
    RefundRequest,
    get_actor,
    get_services,
    ok,
)

router = APIRouter(prefix="/payments", tags=["payments"])


@router.post("/intent")
async def create_payment_intent(
    body: PaymentIntentRequest, actor: Actor = Depends(get_actor), services=Depends(get_services)
):
    intent = await services.payments.create_intent(body.order_id, actor)
    return ok(intent.to_dict())


@router.post("/confirm")
async def confirm_payment(
    body: ConfirmPaymentRequest, actor: Actor = Depends(get_actor), services=Depends(get_services)
):
    order = await services.payments.confirm_payment(body.order_id, body.payment_intent_id, actor)
    return ok(order.to_dict())


@router.post("/refund")
async def refund_payment(
    body: RefundRequest, actor: Actor = Depends(get_actor), services=Depends(get_services)
):
    order = await services.payments.process_refund(body.order_id, body.reason, actor)
    return ok(order.to_dict())


@router.post("/webhook")
async def payment_webhook(
    request: Request,
    stripe_signature: str | None = Header(default=None),
    services=Depends(get_services),
):
    payload = await request.body()
    result = await services.payments.handle_webhook(payload, stripe_signature)
    return result
