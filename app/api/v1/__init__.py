from __future__ import annotations

from fastapi import APIRouter

from . import (
    routes_cart,
    routes_delivery,
    routes_notifications,
    routes_orders,
    routes_payments,
)

router = APIRouter(prefix="/api/v1")

router.include_router(routes_cart.router)
router.include_router(routes_orders.router)
router.include_router(routes_delivery.router)
router.include_router(routes_payments.router)
router.include_router(routes_notifications.router)

__all__ = ["router"]
