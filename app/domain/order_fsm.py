"""Order status transition rules (single source of truth)."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Mapping

from app.domain.order import ActorRole, OrderStatus


@dataclass(frozen=True, slots=True)
class TransitionRule:
    name: str
    allowed_from: frozenset[str]
    target: str | None
    roles: frozenset[str]
    requires_assigned_rider: bool = False


class Transition:
    CONFIRM = "confirm"
    PREPARING = "preparing"
    READY = "ready"
    ACCEPT = "accept"
    PICK_UP = "out_for_delivery"
    DELIVER = "delivered"
    CANCEL = "cancel"


TRANSITIONS: Mapping[str, TransitionRule] = {
    Transition.CONFIRM: TransitionRule(
        name=Transition.CONFIRM,
        allowed_from=frozenset({OrderStatus.PENDING}),
        target=OrderStatus.CONFIRMED,
        roles=frozenset({ActorRole.ADMIN, ActorRole.SYSTEM}),
    ),
    Transition.PREPARING: TransitionRule(
        name=Transition.PREPARING,
        allowed_from=frozenset({OrderStatus.CONFIRMED}),
        target=OrderStatus.PREPARING,
        roles=frozenset({ActorRole.RESTAURANT, ActorRole.ADMIN}),
    ),
    Transition.READY: TransitionRule(
        name=Transition.READY,
        allowed_from=frozenset({OrderStatus.PREPARING}),
        target=OrderStatus.READY,
        roles=frozenset({ActorRole.RESTAURANT, ActorRole.ADMIN}),
    ),
    # Rider assignment does not move the status.
    Transition.ACCEPT: TransitionRule(
        name=Transition.ACCEPT,
        allowed_from=frozenset({OrderStatus.CONFIRMED, OrderStatus.PREPARING, OrderStatus.READY}),
        target=None,
        roles=frozenset({ActorRole.DELIVERY}),
    ),
    Transition.PICK_UP: TransitionRule(
        name=Transition.PICK_UP,
        allowed_from=frozenset({OrderStatus.READY}),
        target=OrderStatus.OUT_FOR_DELIVERY,
        roles=frozenset({ActorRole.DELIVERY}),
        requires_assigned_rider=True,
    ),
    Transition.DELIVER: TransitionRule(
        name=Transition.DELIVER,
        allowed_from=frozenset({OrderStatus.OUT_FOR_DELIVERY}),
        target=OrderStatus.DELIVERED,
        roles=frozenset({ActorRole.DELIVERY}),
        requires_assigned_rider=True,
    ),
    Transition.CANCEL: TransitionRule(
        name=Transition.CANCEL,
        allowed_from=frozenset({OrderStatus.PENDING, OrderStatus.CONFIRMED}),
        target=OrderStatus.CANCELLED,
        roles=frozenset({ActorRole.USER}),
    ),
}

TERMINAL_STATUSES = frozenset({OrderStatus.DELIVERED, OrderStatus.CANCELLED})


@dataclass(frozen=True, slots=True)
class TransitionValidationResult:
    allowed: bool
    reason: str | None = None


def get_rule(transition: str) -> TransitionRule:
    try:
        return TRANSITIONS[transition]
    except KeyError:
        raise ValueError(f"Unknown transition: {transition!r}") from None


def validate_order_transition(*, current_status: str, transition: str) -> TransitionValidationResult:
    """Check the transition table only; actor checks live in the state machine."""
    rule = get_rule(transition)
    if current_status in TERMINAL_STATUSES:
        return TransitionValidationResult(False, f"Order is already {current_status}")
    if current_status not in rule.allowed_from:
        allowed = ", ".join(sorted(rule.allowed_from))
        return TransitionValidationResult(
            False,
            f"Cannot apply '{rule.name}' to an order in status '{current_status}' (allowed from: {allowed})",
        )
    return TransitionValidationResult(True)


def validate_forced_status(*, current_status: str, target_status: str) -> TransitionValidationResult:
    """Admin override: any non-terminal order may be set to any known status."""
    if target_status not in OrderStatus.ALL:
        return TransitionValidationResult(False, f"Unsupported status: {target_status}")
    if current_status in TERMINAL_STATUSES:
        return TransitionValidationResult(False, f"Order is already {current_status}")
    return TransitionValidationResult(True)
