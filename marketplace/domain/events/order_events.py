from dataclasses import dataclass
from decimal import Decimal
from typing import List, Optional

from .base import DomainEvent


@dataclass
class CheckoutCreatedEvent(DomainEvent):
    """Event: a cart became one or more pending orders awaiting payment."""

    def __init__(
        self,
        checkout_session_id: str,
        buyer_id: str,
        order_ids: List[str],
        total_amount: Decimal,
        correlation_id: Optional[str],
    ):
        super().__init__(
            event_type="checkout.created",
            payload={
                "checkout_session_id": checkout_session_id,
                "buyer_id": buyer_id,
                "order_ids": order_ids,
                "total_amount": str(total_amount),
                "correlation_id": correlation_id,
            },
        )


@dataclass
class OrderStatusChangedEvent(DomainEvent):
    """Event: order moved along the state machine."""

    def __init__(self, order_id: str, from_status: str, to_status: str, actor_id: Optional[str]):
        super().__init__(
            event_type="order.status_changed",
            payload={
                "order_id": order_id,
                "from_status": from_status,
                "to_status": to_status,
                "actor_id": actor_id,
            },
        )


@dataclass
class OrderCancelledEvent(DomainEvent):
    """Event: Order cancelled."""

    def __init__(self, order_id: str, user_id: Optional[str], reason: str, payment_status: str):
        super().__init__(
            event_type="order.cancelled",
            payload={
                "order_id": order_id,
                "user_id": user_id,
                "reason": reason,
                "payment_status": payment_status,
            },
        )
