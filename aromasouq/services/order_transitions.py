"""Order status transition table.

Each legal ``(from, to)`` pair maps to the timestamp it stamps, the payment
status it sets and the side effects the coordinator must run. Anything not
listed is rejected.
"""

import enum
from dataclasses import dataclass
from typing import Dict, FrozenSet, Optional, Tuple

from aromasouq import errors
from aromasouq.models.order import OrderStatus, PaymentStatus


class SideEffect(str, enum.Enum):
    RESTORE_STOCK = "RESTORE_STOCK"
    REFUND_COINS_USED = "REFUND_COINS_USED"
    AWARD_COINS_EARNED = "AWARD_COINS_EARNED"


@dataclass(frozen=True)
class Transition:
    source: OrderStatus
    target: OrderStatus
    stamp: Optional[str] = None
    payment_status: Optional[PaymentStatus] = None
    effects: Tuple[SideEffect, ...] = ()


def _cancel(source: OrderStatus) -> Transition:
    return Transition(
        source, OrderStatus.CANCELLED,
        stamp="cancelled_at",
        payment_status=PaymentStatus.REFUNDED,
        effects=(SideEffect.RESTORE_STOCK, SideEffect.REFUND_COINS_USED),
    )


_TRANSITIONS = (
    Transition(OrderStatus.PENDING, OrderStatus.CONFIRMED, stamp="confirmed_at", payment_status=PaymentStatus.PAID),
    _cancel(OrderStatus.PENDING),
    Transition(OrderStatus.CONFIRMED, OrderStatus.PROCESSING),
    Transition(OrderStatus.CONFIRMED, OrderStatus.SHIPPED, stamp="shipped_at"),
    _cancel(OrderStatus.CONFIRMED),
    Transition(OrderStatus.PROCESSING, OrderStatus.SHIPPED, stamp="shipped_at"),
    Transition(
        OrderStatus.SHIPPED, OrderStatus.DELIVERED,
        stamp="delivered_at",
        effects=(SideEffect.AWARD_COINS_EARNED,),
    ),
)

TRANSITIONS: Dict[Tuple[OrderStatus, OrderStatus], Transition] = {
    (t.source, t.target): t for t in _TRANSITIONS
}

TERMINAL: FrozenSet[OrderStatus] = frozenset({OrderStatus.DELIVERED, OrderStatus.CANCELLED})

CANCELLABLE: FrozenSet[OrderStatus] = frozenset(
    source for (source, target) in TRANSITIONS if target == OrderStatus.CANCELLED
)


def allowed_targets(source: OrderStatus) -> FrozenSet[OrderStatus]:
    return frozenset(target for (src, target) in TRANSITIONS if src == source)


def resolve(source: OrderStatus, target: OrderStatus) -> Transition:
    transition = TRANSITIONS.get((source, target))
    if transition is None:
        raise errors.InvalidTransition(f"Cannot change order status from {source.value} to {target.value}")
    return transition
