import logging
from typing import Callable, Dict, List

from .event_bus_interface import EventBus


logger = logging.getLogger(__name__)


class InMemoryEventBus(EventBus):
    """In-process event bus used by tests and single-process development.

    Every published envelope is kept in ``published`` so tests can assert on it.
    """

    def __init__(self):
        self._subscribers: Dict[str, List[Callable]] = {}
        self.published: List[dict] = []

    def publish(self, event_type: str, payload: dict):
        message = self.envelope(event_type, payload)
        self.published.append(message)
        logger.debug(f"Published event: {event_type}")
        for handler in self._subscribers.get(event_type, []):
            try:
                handler(message)
            except Exception as e:
                logger.error(f"Handler {getattr(handler, '__name__', handler)} failed for {event_type}: {e}")

    def subscribe(self, event_type: str, handler: Callable):
        self._subscribers.setdefault(event_type, []).append(handler)

    def events_of_type(self, event_type: str) -> List[dict]:
        return [m for m in self.published if m["event_type"] == event_type]

    def clear(self):
        self.published.clear()
