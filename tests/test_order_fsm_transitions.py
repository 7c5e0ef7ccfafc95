from __future__ import annotations

import pytest

from app.domain.order import OrderStatus
from app.domain.order_fsm import (
    TERMINAL_STATUSES,
    TRANSITIONS,
    Transition,
    get_rule,
    validate_forced_status,
    validate_order_transition,
)

EXPECTED_SOURCES = {
    Transition.CONFIRM: {"pending"},
    Transition.PREPARING: {"confirmed"},
    Transition.READY: {"preparing"},
    Transition.ACCEPT: {"confirmed", "preparing", "ready"},
    Transition.PICK_UP: {"ready"},
    Transition.DELIVER: {"out_for_delivery"},
    Transition.CANCEL: {"pending", "confirmed"},
}


def test_table_matches_expected_sources() -> None:
    assert {name: set(rule.allowed_from) for name, rule in TRANSITIONS.items()} == EXPECTED_SOURCES


@pytest.mark.parametrize("status", OrderStatus.ALL)
@pytest.mark.parametrize("transition", sorted(EXPECTED_SOURCES))
def test_transition_allowed_only_from_listed_states(status: str, transition: str) -> None:
    result = validate_order_transition(current_status=status, transition=transition)
    assert result.allowed is (status in EXPECTED_SOURCES[transition])
    if not result.allowed:
        assert result.reason


@pytest.mark.parametrize("status", sorted(TERMINAL_STATUSES))
def test_terminal_states_block_everything(status: str) -> None:
    for transition in TRANSITIONS:
        assert not validate_order_transition(current_status=status, transition=transition).allowed
        assert not validate_forced_status(current_status=status, target_status=OrderStatus.PENDING).allowed


def test_forced_status_allows_any_known_target() -> None:
    for target in OrderStatus.ALL:
        assert validate_forced_status(current_status="preparing", target_status=target).allowed
    assert not validate_forced_status(current_status="preparing", target_status="lost").allowed


def test_rider_transitions_require_assignment() -> None:
    assert get_rule(Transition.PICK_UP).requires_assigned_rider
    assert get_rule(Transition.DELIVER).requires_assigned_rider
    assert get_rule(Transition.ACCEPT).target is None


def test_unknown_transition_raises() -> None:
    with pytest.raises(ValueError):
        get_rule("teleport")
