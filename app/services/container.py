"""Wires storage, gateway and services together from settings."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from app.core.config import Settings
from app.core.exceptions import ConfigurationException
from app.core.locks import KeyedLock
from app.integrations.payment_service import PaymentGateway, StripeGateway
from app.integrations.redis_cart import CartStorage, create_cart_storage
from app.services.cart_service import CartManager
from app.services.notifications import NotificationDispatcher, PushSender
from app.services.order_builder import OrderBuilder
from app.services.order_state import OrderStateMachine
from app.services.payments import PaymentReconciliation

logger = logging.getLogger(__name__)


@dataclass
class Services:
    cart: CartManager
    orders: OrderBuilder
    lifecycle: OrderStateMachine
    notifications: NotificationDispatcher
    payments_service: PaymentReconciliation | None = None

    @property
    def payments(self) -> PaymentReconciliation:
        if self.payments_service is None:
            raise ConfigurationException("Payments are not configured (STRIPE_SECRET_KEY)")
        return self.payments_service


def build_services(
    settings: Settings,
    db: Any,
    *,
    cart_storage: CartStorage | None = None,
    gateway: PaymentGateway | None = None,
    push_sender: PushSender | None = None,
) -> Services:
    """Build the service graph.

    ``db`` provides the catalog, orders, notifications and user directory
    (``app.infra.db.Database`` in production, in-memory doubles in tests).
    """
    if cart_storage is None:
        cart_storage = create_cart_storage(settings.redis_url, settings.cart_ttl_seconds)
    if gateway is None and settings.payments.enabled:
        gateway = StripeGateway(settings.payments.stripe_secret_key, settings.payments.stripe_webhook_secret)

    notifier = NotificationDispatcher(db, db, catalog=db, push_sender=push_sender)
    cart = CartManager(cart_storage, db, settings.pricing)
    lifecycle = OrderStateMachine(db, db, notifier, locks=KeyedLock())
    builder = OrderBuilder(db, db, settings.pricing, settings.payments, cart=cart)

    payments = None
    if gateway is not None:
        payments = PaymentReconciliation(db, gateway, lifecycle, notifier, settings.payments)
    else:
        logger.warning("STRIPE_SECRET_KEY not set - payment endpoints disabled")

    return Services(
        cart=cart,
        orders=builder,
        lifecycle=lifecycle,
        notifications=notifier,
        payments_service=payments,
    )
