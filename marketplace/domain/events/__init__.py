from .base import DomainEvent, publish_after_commit, publish_event
from .order_events import CheckoutCreatedEvent, OrderCancelledEvent, OrderStatusChangedEvent


__all__ = [
    "DomainEvent",
    "publish_event",
    "publish_after_commit",
    "CheckoutCreatedEvent",
    "OrderStatusChangedEvent",
    "OrderCancelledEvent",
]
