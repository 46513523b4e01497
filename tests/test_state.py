import pytest

from storefront.state import IllegalTransition, OrderStatus, can_transition, ensure_transition, is_terminal


def test_pending_is_the_only_open_state():
    assert not is_terminal(OrderStatus.PENDING)
    assert is_terminal(OrderStatus.COMPLETED)
    assert is_terminal("FAILED")


@pytest.mark.parametrize("target", [OrderStatus.COMPLETED, OrderStatus.FAILED])
def test_pending_settles_once(target):
    assert can_transition(OrderStatus.PENDING, target)
    assert ensure_transition(OrderStatus.PENDING, target) == target


@pytest.mark.parametrize("current", [OrderStatus.COMPLETED, OrderStatus.FAILED])
@pytest.mark.parametrize("target", list(OrderStatus))
def test_terminal_states_never_move(current, target):
    assert not can_transition(current, target)
    with pytest.raises(IllegalTransition):
        ensure_transition(current, target)


def test_pending_to_pending_is_not_a_transition():
    assert not can_transition("PENDING", "PENDING")


def test_unknown_status():
    with pytest.raises(ValueError):
        is_terminal("SHIPPED")
