"""Order lifecycle: status transitions, rider assignment, reviews and read access.

All writes go through ``mutate``: a read-modify-write under a per-order lock
with an optimistic version check in the repository, so a write from another
process between our read and our update surfaces as
``ConcurrentModification`` instead of being lost.
"""
from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any, Callable

from app.core.async_db import as_async
from app.core.exceptions import (
    ActorMismatch,
    AlreadyReviewed,
    AssignmentConflict,
    ConcurrentModification,
    Forbidden,
    InvalidTransition,
    NotFound,
    ValidationFailed,
)
from app.core.locks import KeyedLock
from app.domain.order import Actor, ActorRole, Order, OrderStatus, PaymentStatus, StatusChange, utcnow
from app.domain.order_fsm import (
    Transition,
    get_rule,
    validate_forced_status,
    validate_order_transition,
)
from app.domain.protocols import OrderFilter
from app.services.notifications import NotificationDispatcher

logger = logging.getLogger(__name__)

RIDER_EARNING_PER_DELIVERY = Decimal("40")
REVIEW_MAX_LENGTH = 1000

ACTIVE_DELIVERY_STATUSES = (
    OrderStatus.CONFIRMED,
    OrderStatus.PREPARING,
    OrderStatus.READY,
    OrderStatus.OUT_FOR_DELIVERY,
)

OrderChange = Callable[[Order], "dict[str, Any] | None"]


@dataclass(frozen=True, slots=True)
class RiderStats:
    today_deliveries: int
    today_earnings: Decimal
    total_deliveries: int
    active_tasks: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "todayDeliveries": self.today_deliveries,
            "todayEarnings": float(self.today_earnings),
            "totalDeliveries": self.total_deliveries,
            "activeTasks": self.active_tasks,
        }


@dataclass(frozen=True, slots=True)
class OrderPage:
    orders: list[Order]
    page: int
    pages: int
    total: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "orders": [order.to_dict() for order in self.orders],
            "pagination": {"current": self.page, "pages": self.pages, "total": self.total},
        }


def append_history(order: Order, status: str, actor: Actor, note: str | None = None) -> tuple[StatusChange, ...]:
    return order.status_history + (StatusChange(status, actor.id, actor.role, utcnow(), note),)


class OrderStateMachine:
    def __init__(
        self,
        orders: Any,
        catalog: Any,
        notifier: NotificationDispatcher,
        locks: KeyedLock | None = None,
    ):
        self._orders = as_async(orders)
        self._catalog = as_async(catalog)
        self._notifier = notifier
        self._locks = locks or KeyedLock()

    async def load(self, order_id: str) -> Order:
        order = await self._orders.get_order(order_id)
        if order is None:
            raise NotFound("Order", order_id)
        return order

    async def mutate(self, order_id: str, change: OrderChange) -> tuple[Order, Order]:
        """Apply ``change(order)`` as a versioned patch.

        ``change`` may raise to abort, or return None/{} to leave the order as
        is. Returns ``(before, after)``.
        """
        async with self._locks.hold(order_id):
            order = await self.load(order_id)
            patch = change(order)
            if not patch:
                return order, order
            updated = await self._orders.update_order(order_id, patch, expected_version=order.version)
            if updated is None:
                logger.warning("Order %s changed concurrently (version %s)", order_id, order.version)
                raise ConcurrentModification(f"Order {order_id} was modified concurrently, retry")
            return order, updated

    async def _owns_restaurant(self, actor: Actor, restaurant_id: str) -> bool:
        restaurant = await self._catalog.get_restaurant(restaurant_id)
        return restaurant is not None and restaurant.owner_id == actor.id

    async def transition(self, order_id: str, transition: str, actor: Actor, note: str | None = None) -> Order:
        """Apply one of the table transitions on behalf of ``actor``."""
        rule = get_rule(transition)
        if rule.target is None:
            raise ValueError(f"{transition!r} does not change status; use accept()")
        if actor.role not in rule.roles:
            raise Forbidden(f"Role '{actor.role}' cannot perform '{transition}'")

        if actor.role == ActorRole.RESTAURANT:
            # restaurant_id is immutable.
            order = await self.load(order_id)
            if not await self._owns_restaurant(actor, order.restaurant_id):
                raise Forbidden("Order belongs to another restaurant")

        def change(order: Order) -> dict[str, Any]:
            if actor.role == ActorRole.USER and order.user_id != actor.id:
                raise Forbidden("Only the customer who placed the order can do this")
            result = validate_order_transition(current_status=order.status, transition=transition)
            if not result.allowed:
                raise InvalidTransition(result.reason, current_status=order.status, target=rule.target)
            if rule.requires_assigned_rider:
                if not order.delivery_partner_id:
                    raise ActorMismatch("No delivery partner is assigned to this order")
                if order.delivery_partner_id != actor.id:
                    raise ActorMismatch("Order is assigned to another delivery partner")

            patch: dict[str, Any] = {
                "status": rule.target,
                "status_history": append_history(order, rule.target, actor, note),
            }
            if rule.target == OrderStatus.DELIVERED:
                patch["actual_delivery_time"] = utcnow()
            if transition == Transition.CONFIRM and actor.role == ActorRole.SYSTEM:
                patch["payment_status"] = PaymentStatus.PAID
            return patch

        before, after = await self.mutate(order_id, change)
        logger.info(
            "Order %s: %s -> %s by %s:%s", order_id, before.status, after.status, actor.role, actor.id
        )
        await self._notifier.order_status_changed(after)
        return after

    async def confirm(self, order_id: str, actor: Actor) -> Order:
        return await self.transition(order_id, Transition.CONFIRM, actor)

    async def start_preparing(self, order_id: str, actor: Actor) -> Order:
        return await self.transition(order_id, Transition.PREPARING, actor)

    async def mark_ready(self, order_id: str, actor: Actor) -> Order:
        return await self.transition(order_id, Transition.READY, actor)

    async def pick_up(self, order_id: str, actor: Actor) -> Order:
        return await self.transition(order_id, Transition.PICK_UP, actor)

    async def deliver(self, order_id: str, actor: Actor) -> Order:
        return await self.transition(order_id, Transition.DELIVER, actor)

    async def cancel(self, order_id: str, actor: Actor, reason: str | None = None) -> Order:
        return await self.transition(order_id, Transition.CANCEL, actor, note=reason)

    async def accept(self, order_id: str, actor: Actor) -> Order:
        """Assign the calling rider; first writer wins."""
        rule = get_rule(Transition.ACCEPT)
        if actor.role not in rule.roles:
            raise Forbidden("Only delivery partners can accept orders")

        order = await self.load(order_id)
        if order.delivery_partner_id == actor.id:
            return order
        if order.delivery_partner_id:
            raise AssignmentConflict("Order is already assigned to another delivery partner")
        result = validate_order_transition(current_status=order.status, transition=Transition.ACCEPT)
        if not result.allowed:
            raise InvalidTransition(result.reason, current_status=order.status, target=Transition.ACCEPT)

        assigned = await self._orders.assign_delivery_partner(order_id, actor.id, tuple(rule.allowed_from))
        if assigned is None:
            current = await self.load(order_id)
            if current.delivery_partner_id and current.delivery_partner_id != actor.id:
                raise AssignmentConflict("Order is already assigned to another delivery partner")
            if current.delivery_partner_id == actor.id:
                return current
            raise InvalidTransition(
                f"Order can no longer be accepted in status '{current.status}'",
                current_status=current.status,
                target=Transition.ACCEPT,
            )
        logger.info("Order %s accepted by rider %s", order_id, actor.id)
        return assigned

    async def force_status(self, order_id: str, new_status: str, actor: Actor, note: str | None = None) -> Order:
        """Admin escape hatch that bypasses the transition table."""
        if actor.role != ActorRole.ADMIN:
            raise Forbidden("Only admins can override order status")
        try:
            target = OrderStatus.normalize(new_status)
        except ValueError as exc:
            raise ValidationFailed(str(exc)) from exc

        def change(order: Order) -> dict[str, Any] | None:
            result = validate_forced_status(current_status=order.status, target_status=target)
            if not result.allowed:
                raise InvalidTransition(result.reason, current_status=order.status, target=target)
            if order.status == target:
                return None
            patch: dict[str, Any] = {
                "status": target,
                "status_history": append_history(order, target, actor, note or "admin override"),
            }
            if target == OrderStatus.DELIVERED:
                patch["actual_delivery_time"] = utcnow()
            return patch

        before, after = await self.mutate(order_id, change)
        if before.version == after.version:
            return after
        logger.warning(
            "Admin override on order %s: %s -> %s by %s (%s)",
            order_id,
            before.status,
            after.status,
            actor.id,
            note or "no note",
        )
        await self._notifier.order_status_changed(after)
        return after

    async def add_review(self, order_id: str, actor: Actor, rating: Any, review: str | None = None) -> Order:
        if isinstance(rating, bool):
            raise ValidationFailed("rating must be an integer between 1 and 5")
        try:
            rating = int(rating)
        except (TypeError, ValueError):
            raise ValidationFailed("rating must be an integer between 1 and 5") from None
        if not 1 <= rating <= 5:
            raise ValidationFailed("rating must be an integer between 1 and 5")
        if review is not None and len(review) > REVIEW_MAX_LENGTH:
            raise ValidationFailed(f"review must be at most {REVIEW_MAX_LENGTH} characters")

        def change(order: Order) -> dict[str, Any]:
            if order.user_id != actor.id:
                raise Forbidden("Only the customer who placed the order can review it")
            if order.status != OrderStatus.DELIVERED:
                raise InvalidTransition(
                    "Only delivered orders can be reviewed", current_status=order.status, target="review"
                )
            if order.rating is not None:
                raise AlreadyReviewed("Order has already been reviewed")
            return {"rating": rating, "review": review}

        _, after = await self.mutate(order_id, change)
        logger.info("Order %s reviewed: %s stars", order_id, rating)
        return after

    # Read side

    async def can_view(self, order: Order, actor: Actor) -> bool:
        if actor.role in (ActorRole.ADMIN, ActorRole.SYSTEM):
            return True
        if actor.role == ActorRole.USER:
            return order.user_id == actor.id
        if actor.role == ActorRole.DELIVERY:
            if order.delivery_partner_id:
                return order.delivery_partner_id == actor.id
            return order.status in get_rule(Transition.ACCEPT).allowed_from
        if actor.role == ActorRole.RESTAURANT:
            return await self._owns_restaurant(actor, order.restaurant_id)
        return False

    async def get_order(self, order_id: str, actor: Actor) -> Order:
        order = await self.load(order_id)
        if not await self.can_view(order, actor):
            raise Forbidden("Not allowed to view this order")
        return order

    async def list_user_orders(
        self, user_id: str, status: str | None = None, page: int = 1, limit: int = 10
    ) -> OrderPage:
        if page < 1 or limit < 1 or limit > 100:
            raise ValidationFailed("page must be >= 1 and limit between 1 and 100")
        statuses: tuple[str, ...] = ()
        if status:
            try:
                statuses = (OrderStatus.normalize(status),)
            except ValueError as exc:
                raise ValidationFailed(str(exc)) from exc
        base = OrderFilter(user_id=user_id, statuses=statuses)
        total = await self._orders.count_orders(base)
        orders = await self._orders.list_orders(
            OrderFilter(user_id=user_id, statuses=statuses, limit=limit, offset=(page - 1) * limit)
        )
        return OrderPage(orders=orders, page=page, pages=math.ceil(total / limit), total=total)

    async def available_for_delivery(self, limit: int = 50) -> list[Order]:
        return await self._orders.list_orders(
            OrderFilter(
                statuses=tuple(sorted(get_rule(Transition.ACCEPT).allowed_from)),
                unassigned=True,
                order_by="created_asc",
                limit=limit,
            )
        )

    async def rider_tasks(self, rider_id: str) -> list[Order]:
        return await self._orders.list_orders(
            OrderFilter(delivery_partner_id=rider_id, statuses=ACTIVE_DELIVERY_STATUSES, order_by="created_asc")
        )

    async def rider_history(self, rider_id: str, limit: int = 50) -> list[Order]:
        return await self._orders.list_orders(
            OrderFilter(
                delivery_partner_id=rider_id,
                statuses=(OrderStatus.DELIVERED,),
                order_by="delivered_desc",
                limit=limit,
            )
        )

    async def rider_stats(self, rider_id: str, now: datetime | None = None) -> RiderStats:
        now = now or utcnow()
        day_start = now.replace(hour=0, minute=0, second=0, microsecond=0)
        delivered = (OrderStatus.DELIVERED,)
        today = await self._orders.count_orders(
            OrderFilter(delivery_partner_id=rider_id, statuses=delivered, delivered_since=day_start)
        )
        total = await self._orders.count_orders(OrderFilter(delivery_partner_id=rider_id, statuses=delivered))
        active = await self._orders.count_orders(
            OrderFilter(delivery_partner_id=rider_id, statuses=ACTIVE_DELIVERY_STATUSES)
        )
        return RiderStats(
            today_deliveries=today,
            today_earnings=RIDER_EARNING_PER_DELIVERY * today,
            total_deliveries=total,
            active_tasks=active,
        )
