from fastapi import APIRouter, Depends, Request

from app.api.rate_limit import limiter, order_creation_limit
from app.domain.order import Actor

from .common import (
    AddCartItemRequest,
    CheckoutRequest,
    SetQuantityRequest,
    get_actor,
    get_services,
    ok,
)

router = APIRouter(prefix="/cart", tags=["cart"])


@router.get("")
async def get_cart(actor: Actor = Depends(get_actor), services=Depends(get_services)):
    cart = await services.cart.get_cart(actor.id)
    return ok(cart.to_dict())


@router.post("/items")
async def add_item(
    body: AddCartItemRequest, actor: Actor = Depends(get_actor), services=Depends(get_services)
):
    cart = await services.cart.add_item(
        actor.id, body.menu_item_id, body.quantity, body.special_instructions
    )
    return ok(cart.to_dict())


@router.put("/items/{menu_item_id}")
async def set_item_quantity(
    menu_item_id: str,
    body: SetQuantityRequest,
    actor: Actor = Depends(get_actor),
    services=Depends(get_services),
):
    cart = await services.cart.set_item_quantity(actor.id, menu_item_id, body.quantity)
    return ok(cart.to_dict())


@router.delete("/items/{menu_item_id}")
async def remove_item(menu_item_id: str, actor: Actor = Depends(get_actor), services=Depends(get_services)):
    cart = await services.cart.remove_item(actor.id, menu_item_id)
    return ok(cart.to_dict())


@router.delete("")
async def clear_cart(actor: Actor = Depends(get_actor), services=Depends(get_services)):
    cart = await services.cart.clear(actor.id)
    return ok(cart.to_dict())


@router.post("/checkout", status_code=201)
@limiter.limit(order_creation_limit)
async def checkout(
    request: Request,
    body: CheckoutRequest,
    actor: Actor = Depends(get_actor),
    services=Depends(get_services),
):
    order = await services.orders.checkout(
        actor.id, body.delivery_address, body.payment_method, body.special_instructions
    )
    return ok(order.to_dict())
