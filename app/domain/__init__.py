"""Domain package."""

from .cart import Cart, CartLine
from .notification import Notification, NotificationType
from .order import (
    Actor,
    ActorRole,
    DeliveryAddress,
    Order,
    OrderItem,
    OrderStatus,
    PaymentMethod,
    PaymentMethodType,
    PaymentStatus,
    StatusChange,
)

__all__ = [
    # Entities
    "Cart",
    "CartLine",
    "Order",
    "OrderItem",
    "Notification",
    # Value Objects
    "Actor",
    "ActorRole",
    "DeliveryAddress",
    "NotificationType",
    "OrderStatus",
    "PaymentMethod",
    "PaymentMethodType",
    "PaymentStatus",
    "StatusChange",
]
