from fastapi import APIRouter, Depends, HTTPException, Query, Request

from app.api.rate_limit import limiter, order_creation_limit
from app.domain.order import Actor, ActorRole, OrderStatus
from app.domain.order_fsm import Transition

from .common import (
    CancelRequest,
    CreateOrderRequest,
    ReviewRequest,
    StatusUpdateRequest,
    get_actor,
    get_services,
    logger,
    ok,
    require_role,
)

router = APIRouter(tags=["orders"])

# Target status -> table transition for the status endpoint.
STATUS_TRANSITIONS = {
    OrderStatus.CONFIRMED: Transition.CONFIRM,
    OrderStatus.PREPARING: Transition.PREPARING,
    OrderStatus.READY: Transition.READY,
    OrderStatus.OUT_FOR_DELIVERY: Transition.PICK_UP,
    OrderStatus.DELIVERED: Transition.DELIVER,
    OrderStatus.CANCELLED: Transition.CANCEL,
}


@router.post("/orders", status_code=201)
@limiter.limit(order_creation_limit)
async def create_order(
    request: Request,
    body: CreateOrderRequest,
    actor: Actor = Depends(get_actor),
    services=Depends(get_services),
):
    require_role(actor, ActorRole.USER)
    order = await services.orders.create_order(
        actor.id,
        body.restaurant_id,
        body.items,
        body.delivery_address,
        body.payment_method,
        body.special_instructions,
    )
    return ok(order.to_dict())


@router.get("/orders")
async def list_my_orders(
    status: str | None = Query(default=None),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=100),
    actor: Actor = Depends(get_actor),
    services=Depends(get_services),
):
    result = await services.lifecycle.list_user_orders(actor.id, status=status, page=page, limit=limit)
    return ok(result.to_dict())


@router.get("/orders/{order_id}")
async def get_order(order_id: str, actor: Actor = Depends(get_actor), services=Depends(get_services)):
    order = await services.lifecycle.get_order(order_id, actor)
    return ok(order.to_dict())


@router.patch("/orders/{order_id}/status")
async def update_status(
    order_id: str,
    body: StatusUpdateRequest,
    actor: Actor = Depends(get_actor),
    services=Depends(get_services),
):
    transition = STATUS_TRANSITIONS.get(body.status.strip().lower())
    if transition is None:
        raise HTTPException(status_code=400, detail=f"Unsupported status: {body.status}")
    order = await services.lifecycle.transition(order_id, transition, actor, note=body.note)
    return ok(order.to_dict())


@router.post("/orders/{order_id}/cancel")
async def cancel_order(
    order_id: str,
    body: CancelRequest | None = None,
    actor: Actor = Depends(get_actor),
    services=Depends(get_services),
):
    order = await services.lifecycle.cancel(order_id, actor, reason=body.reason if body else None)
    return ok(order.to_dict())


@router.post("/orders/{order_id}/review")
async def review_order(
    order_id: str,
    body: ReviewRequest,
    actor: Actor = Depends(get_actor),
    services=Depends(get_services),
):
    order = await services.lifecycle.add_review(order_id, actor, body.rating, body.review)
    return ok(order.to_dict())


@router.put("/admin/orders/{order_id}/status")
async def force_status(
    order_id: str,
    body: StatusUpdateRequest,
    actor: Actor = Depends(get_actor),
    services=Depends(get_services),
):
    require_role(actor, ActorRole.ADMIN)
    order = await services.lifecycle.force_status(order_id, body.status, actor, note=body.note)
    logger.info("Admin %s set order %s to %s", actor.id, order_id, order.status)
    return ok(order.to_dict())
