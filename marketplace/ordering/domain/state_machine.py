"""
Order status state machine.

Pure rules: which status changes exist and who may drive them. Applying a
change to the database is OrderService.apply_transition's job.
"""

from datetime import datetime
from typing import Dict, FrozenSet

from marketplace.domain.exceptions import InvalidTransition, TransitionNotPermitted
from marketplace.ordering.domain.models.order import OrderStatus

ALLOWED_TRANSITIONS: Dict[str, FrozenSet[str]] = {
    OrderStatus.PENDING: frozenset({OrderStatus.CONFIRMED, OrderStatus.CANCELLED}),
    OrderStatus.CONFIRMED: frozenset({OrderStatus.SHIPPED, OrderStatus.CANCELLED}),
    OrderStatus.SHIPPED: frozenset({OrderStatus.DELIVERED, OrderStatus.CANCELLED}),
    OrderStatus.DELIVERED: frozenset(),
    OrderStatus.CANCELLED: frozenset(),
    OrderStatus.REFUNDED: frozenset(),
}

FORWARD_STATUSES = frozenset({OrderStatus.CONFIRMED, OrderStatus.SHIPPED, OrderStatus.DELIVERED})

# Column stamped when an order enters each status
TIMESTAMP_FIELDS = {
    OrderStatus.CONFIRMED: "confirmed_at",
    OrderStatus.SHIPPED: "shipped_at",
    OrderStatus.DELIVERED: "delivered_at",
    OrderStatus.CANCELLED: "cancelled_at",
}


class ActorRole:
    BUYER = "buyer"
    SELLER = "seller"
    ADMIN = "admin"
    # Payment callback and reconciler
    SYSTEM = "system"


def can_transition(current: str, target: str) -> bool:
    return target in ALLOWED_TRANSITIONS.get(current, frozenset())


def validate_transition(current: str, target: str) -> None:
    if not can_transition(current, target):
        raise InvalidTransition(current, target)


def authorize_transition(current: str, target: str, role: str) -> None:
    """
    Raise TransitionNotPermitted unless ``role`` may move an order from
    ``current`` to ``target``.

    Forward moves belong to the seller or an admin. Cancelling belongs to the
    buyer while the order is pending, and to admins for any non-terminal
    order. The system actor drives payment outcomes and timeouts.
    """
    if role == ActorRole.SYSTEM:
        return

    if target == OrderStatus.CANCELLED:
        if role == ActorRole.ADMIN:
            return
        if role == ActorRole.BUYER and current == OrderStatus.PENDING:
            return
        if role == ActorRole.BUYER:
            raise TransitionNotPermitted("Buyers can only cancel pending orders")
        raise TransitionNotPermitted("Only the buyer can cancel this order")

    if target in FORWARD_STATUSES and role in (ActorRole.SELLER, ActorRole.ADMIN):
        return

    raise TransitionNotPermitted(f"A {role} cannot move an order to '{target}'")


def transition_timestamps(target: str, now: datetime) -> dict:
    field = TIMESTAMP_FIELDS.get(target)
    return {field: now} if field else {}
