# storefront/state.py
"""Order settlement lifecycle.

PENDING is the only non-terminal state. An order leaves it exactly once, to
COMPLETED (payment confirmed, stock deducted) or FAILED (payment failed,
tampered, or expired). Nothing leaves a terminal state.
"""
import enum


class OrderStatus(str, enum.Enum):
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


TERMINAL_STATUSES = frozenset({OrderStatus.COMPLETED, OrderStatus.FAILED})

ALLOWED_TRANSITIONS = {
    OrderStatus.PENDING: frozenset({OrderStatus.COMPLETED, OrderStatus.FAILED}),
    OrderStatus.COMPLETED: frozenset(),
    OrderStatus.FAILED: frozenset(),
}


class IllegalTransition(Exception):
    def __init__(self, current: OrderStatus, target: OrderStatus):
        super().__init__(f"illegal order transition {current.value} -> {target.value}")
        self.current = current
        self.target = target


def is_terminal(status) -> bool:
    return OrderStatus(status) in TERMINAL_STATUSES


def can_transition(current, target) -> bool:
    return OrderStatus(target) in ALLOWED_TRANSITIONS[OrderStatus(current)]


def ensure_transition(current, target) -> OrderStatus:
    current, target = OrderStatus(current), OrderStatus(target)
    if target not in ALLOWED_TRANSITIONS[current]:
        raise IllegalTransition(current, target)
    return target
