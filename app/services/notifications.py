"""
Notification dispatch for order and payment events.

Every notification is stored first and then handed to an optional push
sender in the background. Failures on either step are logged and never
propagate into the order transition that triggered them.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

from app.core.async_db import as_async
from app.core.sentry_integration import capture_exception
from app.domain.notification import Notification, NotificationType
from app.domain.order import ActorRole, Order, OrderStatus

logger = logging.getLogger(__name__)

PushSender = Callable[[Notification], Awaitable[None]]


class Audience:
    CUSTOMER = "customer"
    RESTAURANT = "restaurant"
    RIDER = "rider"
    ADMINS = "admins"


@dataclass(frozen=True, slots=True)
class StatusMessage:
    audience: str
    title: str
    message: str
    type: NotificationType = NotificationType.ORDER_UPDATE


STATUS_MESSAGES: dict[str, tuple[StatusMessage, ...]] = {
    OrderStatus.CONFIRMED: (
        StatusMessage(Audience.CUSTOMER, "Order Confirmed", "Your order #{ref} has been confirmed."),
        StatusMessage(Audience.RESTAURANT, "New Order", "Order #{ref} is confirmed and waiting to be prepared."),
        StatusMessage(Audience.ADMINS, "Order Confirmed", "Order #{ref} ({total}) has been confirmed."),
    ),
    OrderStatus.PREPARING: (
        StatusMessage(Audience.CUSTOMER, "Order Being Prepared", "The restaurant is preparing your order #{ref}."),
    ),
    OrderStatus.READY: (
        StatusMessage(Audience.CUSTOMER, "Order Ready", "Your order #{ref} is ready and waiting for pickup."),
        StatusMessage(
            Audience.RIDER,
            "Order Ready for Pickup",
            "Order #{ref} is ready for pickup.",
            NotificationType.DELIVERY_UPDATE,
        ),
    ),
    OrderStatus.OUT_FOR_DELIVERY: (
        StatusMessage(Audience.CUSTOMER, "Out for Delivery", "Your order #{ref} is on its way."),
    ),
    OrderStatus.DELIVERED: (
        StatusMessage(Audience.CUSTOMER, "Order Delivered", "Your order #{ref} has been delivered. Enjoy!"),
        StatusMessage(Audience.RESTAURANT, "Order Delivered", "Order #{ref} was delivered to the customer."),
        StatusMessage(
            Audience.RIDER,
            "Delivery Completed",
            "Order #{ref} is marked as delivered.",
            NotificationType.DELIVERY_UPDATE,
        ),
    ),
    OrderStatus.CANCELLED: (
        StatusMessage(
            Audience.CUSTOMER, "Order Cancelled", "Your order #{ref} has been cancelled.", NotificationType.CANCELLATION
        ),
        StatusMessage(
            Audience.RESTAURANT, "Order Cancelled", "Order #{ref} has been cancelled.", NotificationType.CANCELLATION
        ),
        StatusMessage(
            Audience.RIDER, "Delivery Cancelled", "Order #{ref} has been cancelled.", NotificationType.CANCELLATION
        ),
    ),
}


def order_ref(order_id: str) -> str:
    """Short reference shown to people."""
    return order_id[-8:].upper()


class NotificationDispatcher:
    """Creates notification records and forwards them to the push sender."""

    def __init__(
        self,
        store: Any,
        users: Any,
        catalog: Any = None,
        push_sender: PushSender | None = None,
    ) -> None:
        self._store = as_async(store)
        self._users = as_async(users)
        self._catalog = as_async(catalog) if catalog is not None else None
        self._push_sender = push_sender
        self._background: set[asyncio.Task] = set()

    async def notify(
        self,
        recipient_id: str,
        recipient_role: str,
        type: NotificationType,
        title: str,
        message: str,
        related_order_id: str | None = None,
    ) -> Notification | None:
        notification = Notification(
            recipient_id=str(recipient_id),
            recipient_role=recipient_role,
            type=type,
            title=title,
            message=message,
            related_order_id=related_order_id,
        )
        try:
            stored = await self._store.create_notification(notification)
        except Exception as exc:
            logger.error(
                "Failed to store %s notification for %s (order %s): %s",
                type.value,
                recipient_id,
                related_order_id,
                exc,
            )
            capture_exception(exc, recipient_id=recipient_id, order_id=related_order_id)
            return None
        self._schedule_push(stored)
        return stored

    def _schedule_push(self, notification: Notification) -> None:
        if self._push_sender is None:
            return
        task = asyncio.create_task(self._push_sender(notification))
        self._background.add(task)
        task.add_done_callback(self._on_push_done)

    def _on_push_done(self, task: asyncio.Task) -> None:
        self._background.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.warning("Push delivery failed: %s", exc)

    async def drain(self) -> None:
        """Wait for pending push deliveries (shutdown and tests)."""
        if self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    async def _role_members(self, role: str) -> list[str]:
        try:
            return list(await self._users.list_user_ids_by_role(role))
        except Exception as exc:
            logger.error("Failed to look up %s recipients: %s", role, exc)
            return []

    async def notify_admins(
        self,
        type: NotificationType,
        title: str,
        message: str,
        related_order_id: str | None = None,
    ) -> list[Notification]:
        created = []
        for admin_id in await self._role_members(ActorRole.ADMIN):
            notification = await self.notify(admin_id, ActorRole.ADMIN, type, title, message, related_order_id)
            if notification is not None:
                created.append(notification)
        return created

    async def _restaurant_owner(self, restaurant_id: str) -> str | None:
        if self._catalog is None:
            return None
        try:
            restaurant = await self._catalog.get_restaurant(restaurant_id)
        except Exception as exc:
            logger.error("Failed to look up owner of restaurant %s: %s", restaurant_id, exc)
            return None
        return restaurant.owner_id if restaurant else None

    async def _recipients(self, audience: str, order: Order) -> list[tuple[str, str]]:
        if audience == Audience.CUSTOMER:
            return [(order.user_id, ActorRole.USER)]
        if audience == Audience.RESTAURANT:
            owner_id = await self._restaurant_owner(order.restaurant_id)
            return [(owner_id, ActorRole.RESTAURANT)] if owner_id else []
        if audience == Audience.RIDER:
            if order.delivery_partner_id:
                return [(order.delivery_partner_id, ActorRole.DELIVERY)]
            if order.status == OrderStatus.READY:
                # Nobody accepted yet: tell the whole delivery pool.
                return [(rider_id, ActorRole.DELIVERY) for rider_id in await self._role_members(ActorRole.DELIVERY)]
            return []
        if audience == Audience.ADMINS:
            return [(admin_id, ActorRole.ADMIN) for admin_id in await self._role_members(ActorRole.ADMIN)]
        raise ValueError(f"Unknown audience: {audience}")

    async def order_status_changed(self, order: Order) -> list[Notification]:
        """Send the messages defined for the order's new status."""
        created: list[Notification] = []
        for template in STATUS_MESSAGES.get(order.status, ()):
            text = template.message.format(ref=order_ref(order.id), total=f"{order.total:.2f}")
            for recipient_id, role in await self._recipients(template.audience, order):
                notification = await self.notify(recipient_id, role, template.type, template.title, text, order.id)
                if notification is not None:
                    created.append(notification)
        return created

    async def payment_failed(self, order: Order, reason: str | None = None) -> Notification | None:
        message = f"Payment for order #{order_ref(order.id)} failed."
        if reason:
            message = f"{message} {reason}"
        return await self.notify(
            order.user_id, ActorRole.USER, NotificationType.PAYMENT_FAILED, "Payment Failed", message, order.id
        )

    async def refund_processed(self, order: Order) -> list[Notification]:
        ref = order_ref(order.id)
        created = []
        customer = await self.notify(
            order.user_id,
            ActorRole.USER,
            NotificationType.REFUND_PROCESSED,
            "Refund Processed",
            f"Your refund of {order.total:.2f} for order #{ref} has been processed.",
            order.id,
        )
        if customer is not None:
            created.append(customer)
        created.extend(
            await self.notify_admins(
                NotificationType.REFUND_PROCESSED,
                "Refund Processed",
                f"Order #{ref} was refunded ({order.total:.2f}).",
                order.id,
            )
        )
        return created

    # Stored notification access

    async def list_notifications(self, recipient_id: str, *, unread_only: bool = False, limit: int = 50):
        return await self._store.list_notifications(recipient_id, unread_only=unread_only, limit=limit)

    async def mark_read(self, notification_id: str, recipient_id: str) -> bool:
        return await self._store.mark_read(notification_id, recipient_id)

    async def mark_all_read(self, recipient_id: str) -> int:
        return await self._store.mark_all_read(recipient_id)

    async def unread_count(self, recipient_id: str) -> int:
        return await self._store.unread_count(recipient_id)
