"""Integrations package - external systems (cart store, payment gateway)."""

from app.integrations.payment_service import (
    IntentStatus,
    PaymentGateway,
    PaymentIntentResult,
    RefundResult,
    StripeGateway,
)
from app.integrations.redis_cart import (
    CartStorage,
    MemoryCartStorage,
    RedisCartStorage,
    create_cart_storage,
)

__all__ = [
    "CartStorage",
    "IntentStatus",
    "MemoryCartStorage",
    "PaymentGateway",
    "PaymentIntentResult",
    "RedisCartStorage",
    "RefundResult",
    "StripeGateway",
    "create_cart_storage",
]
