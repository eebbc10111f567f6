"""
Order status state machine.

PENDING -> PAYMENT_FAILED | PROCESSING | CANCELLED
PROCESSING -> SHIPPED | CANCELLED
SHIPPED -> DELIVERED | CANCELLED
DELIVERED -> RETURNED

PAYMENT_FAILED, CANCELLED and RETURNED are terminal.
"""

from typing import Dict, FrozenSet, Tuple

from .models import OrderStatus
from .protocols import InvalidOrderStateError


ORDER_TRANSITIONS: Dict[OrderStatus, FrozenSet[OrderStatus]] = {
    OrderStatus.PENDING: frozenset({
        OrderStatus.PAYMENT_FAILED,
        OrderStatus.PROCESSING,
        OrderStatus.CANCELLED,
    }),
    OrderStatus.PROCESSING: frozenset({OrderStatus.SHIPPED, OrderStatus.CANCELLED}),
    OrderStatus.SHIPPED: frozenset({OrderStatus.DELIVERED, OrderStatus.CANCELLED}),
    OrderStatus.DELIVERED: frozenset({OrderStatus.RETURNED}),
    OrderStatus.PAYMENT_FAILED: frozenset(),
    OrderStatus.CANCELLED: frozenset(),
    OrderStatus.RETURNED: frozenset(),
}

# Payment-derived moves; only settlement applies them.
SETTLEMENT_TRANSITIONS: FrozenSet[Tuple[OrderStatus, OrderStatus]] = frozenset({
    (OrderStatus.PENDING, OrderStatus.PROCESSING),
    (OrderStatus.PENDING, OrderStatus.PAYMENT_FAILED),
})


def can_transition(current: OrderStatus, target: OrderStatus) -> bool:
    return target in ORDER_TRANSITIONS.get(current, frozenset())


def can_admin_transition(current: OrderStatus, target: OrderStatus) -> bool:
    return can_transition(current, target) and (current, target) not in SETTLEMENT_TRANSITIONS


def assert_admin_transition(order_id: str, current: OrderStatus, target: OrderStatus) -> None:
    """Raise InvalidOrderStateError unless an operator may apply current -> target"""
    if not can_admin_transition(current, target):
        raise InvalidOrderStateError(
            f"Cannot move order from {current.value} to {target.value}",
            order_id=order_id,
        )
