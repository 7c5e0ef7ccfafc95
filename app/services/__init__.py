"""Business services orchestrating domain logic."""

from .cart_service import CartManager
from .container import Services, build_services
from .notifications import NotificationDispatcher
from .order_builder import OrderBuilder
from .order_state import OrderStateMachine
from .payments import PaymentReconciliation

__all__ = [
    "CartManager",
    "NotificationDispatcher",
    "OrderBuilder",
    "OrderStateMachine",
    "PaymentReconciliation",
    "Services",
    "build_services",
]
