import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict

from django.utils import timezone

from infrastructure.events import get_event_bus

logger = logging.getLogger(__name__)


@dataclass
class DomainEvent:
    """Base class for all domain events."""

    event_type: str
    occurred_at: datetime = field(default_factory=timezone.now)
    payload: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {"event_type": self.event_type, "occurred_at": self.occurred_at.isoformat(), "payload": self.payload}


def publish_event(event: DomainEvent) -> None:
    """Hand the event to the configured bus. The bus never raises."""
    get_event_bus().publish(event.event_type, event.payload)


def publish_after_commit(uow, *events: DomainEvent) -> None:
    """Publish events once the unit of work commits; dropped if it rolls back."""
    for event in events:
        uow.on_commit(lambda event=event: publish_event(event))
