from abc import ABC, abstractmethod
from typing import Callable

from django.utils import timezone


class EventBus(ABC):
    """Publish/subscribe abstraction for domain events.

    Handlers receive the envelope ``{"event_type", "occurred_at", "payload"}``.
    """

    @abstractmethod
    def publish(self, event_type: str, payload: dict):
        """Publish an event. Implementations must never raise into business logic."""

    @abstractmethod
    def subscribe(self, event_type: str, handler: Callable):
        """Register a handler for an event type."""

    @staticmethod
    def envelope(event_type: str, payload: dict) -> dict:
        return {"event_type": event_type, "occurred_at": timezone.now().isoformat(), "payload": payload}
