from __future__ import annotations

from fastapi import APIRouter, Depends, Query

from app.domain.order import Actor, ActorRole

from .common import get_actor, get_services, ok, require_role

router = APIRouter(prefix="/delivery", tags=["delivery"])


def get_rider(actor: Actor = Depends(get_actor)) -> Actor:
    require_role(actor, ActorRole.DELIVERY)
    return actor


@router.get("/orders/available")
async def available_orders(
    limit: int = Query(default=50, ge=1, le=100),
    rider: Actor = Depends(get_rider),
    services=Depends(get_services),
):
    orders = await services.lifecycle.available_for_delivery(limit=limit)
    return ok([order.to_dict() for order in orders])


@router.post("/orders/{order_id}/accept")
async def accept_order(order_id: str, rider: Actor = Depends(get_rider), services=Depends(get_services)):
    order = await services.lifecycle.accept(order_id, rider)
    return ok(order.to_dict())


@router.post("/orders/{order_id}/pickup")
async def pick_up_order(order_id: str, rider: Actor = Depends(get_rider), services=Depends(get_services)):
    order = await services.lifecycle.pick_up(order_id, rider)
    return ok(order.to_dict())


@router.post("/orders/{order_id}/deliver")
async def deliver_order(order_id: str, rider: Actor = Depends(get_rider), services=Depends(get_services)):
    order = await services.lifecycle.deliver(order_id, rider)
    return ok(order.to_dict())


@router.get("/tasks")
async def my_tasks(rider: Actor = Depends(get_rider), services=Depends(get_services)):
    orders = await services.lifecycle.rider_tasks(rider.id)
    return ok([order.to_dict() for order in orders])


@router.get("/history")
async def my_history(
    limit: int = Query(default=50, ge=1, le=100),
    rider: Actor = Depends(get_rider),
    services=Depends(get_services),
):
    orders = await services.lifecycle.rider_history(rider.id, limit=limit)
    return ok([order.to_dict() for order in orders])


@router.get("/stats")
async def my_stats(rider: Actor = Depends(get_rider), services=Depends(get_services)):
    stats = await services.lifecycle.rider_stats(rider.id)
    return ok(stats.to_dict())
