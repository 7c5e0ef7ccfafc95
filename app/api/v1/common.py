from __future__ import annotations

import logging
from typing import Any

from fastapi import Header, HTTPException, Request
from pydantic import BaseModel, ConfigDict, Field

from app.domain.order import Actor, ActorRole
from app.services.container import Services

logger = logging.getLogger(__name__)

CLIENT_ROLES = (ActorRole.USER, ActorRole.ADMIN, ActorRole.RESTAURANT, ActorRole.DELIVERY)


# =============================================================================
# Dependencies
# =============================================================================


def get_services(request: Request) -> Services:
    services = getattr(request.app.state, "services", None)
    if services is None:
        raise HTTPException(status_code=503, detail="Service not initialized")
    return services


def get_actor(
    x_user_id: str | None = Header(default=None),
    x_user_role: str | None = Header(default=None),
) -> Actor:
    """Caller identity as set by the authenticating gateway in front of the API."""
    user_id = (x_user_id or "").strip()
    if not user_id:
        raise HTTPException(status_code=401, detail="Authentication required")
    role = (x_user_role or ActorRole.USER).strip().lower()
    if role not in CLIENT_ROLES:
        raise HTTPException(status_code=401, detail=f"Unknown role: {role}")
    return Actor(id=user_id, role=role)


def require_role(actor: Actor, *roles: str) -> None:
    if actor.role not in roles:
        raise HTTPException(status_code=403, detail="Not allowed for this role")


def ok(data: Any) -> dict[str, Any]:
    return {"success": True, "data": data}


# =============================================================================
# Request models
# =============================================================================


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class AddCartItemRequest(_CamelModel):
    menu_item_id: str = Field(alias="menuItemId", min_length=1)
    quantity: int = 1
    special_instructions: str | None = Field(default=None, alias="specialInstructions", max_length=500)


class SetQuantityRequest(_CamelModel):
    quantity: int


class CheckoutRequest(_CamelModel):
    delivery_address: dict[str, Any] | str | None = Field(default=None, alias="deliveryAddress")
    payment_method: dict[str, Any] | str | None = Field(default=None, alias="paymentMethod")
    special_instructions: str | None = Field(default=None, alias="specialInstructions", max_length=1000)


class CreateOrderRequest(CheckoutRequest):
    restaurant_id: str | None = Field(default=None, alias="restaurantId")
    items: list[dict[str, Any]] = Field(default_factory=list)


class StatusUpdateRequest(_CamelModel):
    status: str
    note: str | None = Field(default=None, max_length=500)


class CancelRequest(_CamelModel):
    reason: str | None = Field(default=None, max_length=500)


class ReviewRequest(_CamelModel):
    rating: int
    review: str | None = None


class PaymentIntentRequest(_CamelModel):
    order_id: str = Field(alias="orderId")


class ConfirmPaymentRequest(_CamelModel):
    order_id: str = Field(alias="orderId")
    payment_intent_id: str = Field(alias="paymentIntentId")


class RefundRequest(_CamelModel):
    order_id: str = Field(alias="orderId")
    reason: str | None = None
