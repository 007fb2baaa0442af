import json
import logging
import threading
from typing import Callable, Dict, List, Optional

import redis
from django.conf import settings
from django.core.serializers.json import DjangoJSONEncoder

from .event_bus_interface import EventBus
from .memory_event_bus import InMemoryEventBus


logger = logging.getLogger(__name__)

DEFAULT_CHANNEL_PREFIX = "campus_market.events"


class RedisEventBus(EventBus):
    """Fans domain events out over Redis pub/sub.

    Each event type gets its own channel, ``<prefix>.<event_type>``. Publishing
    is fire-and-forget: a Redis outage drops the event with an error log and
    never fails the committed order or payment change that produced it.
    """

    def __init__(self, redis_url: Optional[str] = None, channel_prefix: Optional[str] = None):
        infra = getattr(settings, "INFRASTRUCTURE", {})
        self.redis_url = redis_url or infra.get("EVENT_BUS_REDIS_URL") or settings.CELERY_BROKER_URL
        self.channel_prefix = channel_prefix or infra.get("EVENT_CHANNEL_PREFIX", DEFAULT_CHANNEL_PREFIX)
        self._subscribers: Dict[str, List[Callable]] = {}
        self._listener: Optional[threading.Thread] = None

        try:
            self.redis_client = redis.from_url(self.redis_url)
        except (redis.RedisError, ValueError) as e:
            logger.error(f"Event bus disabled, bad Redis URL {self.redis_url!r}: {e}")
            self.redis_client = None

    def channel(self, event_type: str) -> str:
        return f"{self.channel_prefix}.{event_type}"

    def publish(self, event_type: str, payload: dict):
        if self.redis_client is None:
            logger.warning(f"Event {event_type} dropped: no Redis client")
            return

        try:
            body = json.dumps(self.envelope(event_type, payload), cls=DjangoJSONEncoder)
            receivers = self.redis_client.publish(self.channel(event_type), body)
            logger.debug(f"Published {event_type} to {receivers} subscriber(s)")
        except (redis.RedisError, TypeError) as e:
            logger.error(f"Event {event_type} dropped: {e}")

    def subscribe(self, event_type: str, handler: Callable):
        self._subscribers.setdefault(event_type, []).append(handler)

    def start_listening(self):
        """Consume subscribed channels on a daemon thread. Calling it twice is a no-op."""
        if self.redis_client is None or not self._subscribers:
            return
        if self._listener is not None and self._listener.is_alive():
            return

        self._listener = threading.Thread(target=self._listen, name="event-bus-listener", daemon=True)
        self._listener.start()

    def _listen(self):
        channels = [self.channel(event_type) for event_type in self._subscribers]
        try:
            pubsub = self.redis_client.pubsub(ignore_subscribe_messages=True)
            pubsub.subscribe(*channels)
            logger.info(f"Event bus listening on {len(channels)} channel(s)")
            for message in pubsub.listen():
                self.dispatch(message["data"])
        except redis.RedisError as e:
            logger.error(f"Event bus listener stopped: {e}")

    def dispatch(self, raw):
        """Decode one pub/sub message and hand the envelope to its handlers."""
        try:
            envelope = json.loads(raw)
        except (TypeError, ValueError) as e:
            logger.error(f"Undecodable event message skipped: {e}")
            return

        event_type = envelope.get("event_type")
        for handler in self._subscribers.get(event_type, []):
            try:
                handler(envelope)
            except Exception as e:
                logger.error(f"Handler {getattr(handler, '__name__', handler)} failed for {event_type}: {e}")


_event_bus_instance = None


def get_event_bus() -> EventBus:
    """Process-wide bus for the configured ``EVENT_BUS_BACKEND``."""
    global _event_bus_instance
    if _event_bus_instance is None:
        backend = getattr(settings, "INFRASTRUCTURE", {}).get("EVENT_BUS_BACKEND", "redis")
        _event_bus_instance = InMemoryEventBus() if backend == "memory" else RedisEventBus()
    return _event_bus_instance


def reset_event_bus():
    """Drop the cached bus so the next call re-reads settings."""
    global _event_bus_instance
    _event_bus_instance = None
