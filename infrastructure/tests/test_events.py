import json
from unittest.mock import MagicMock, patch

import redis
from django.test import SimpleTestCase, override_settings

from infrastructure.events import InMemoryEventBus, RedisEventBus, get_event_bus, reset_event_bus


class InMemoryEventBusTest(SimpleTestCase):
    def test_publish_records_and_dispatches(self):
        bus = InMemoryEventBus()
        handler = MagicMock()
        bus.subscribe("order.confirmed", handler)

        bus.publish("order.confirmed", {"order_id": "1"})

        self.assertEqual(len(bus.events_of_type("order.confirmed")), 1)
        handler.assert_called_once()
        self.assertEqual(handler.call_args.args[0]["payload"], {"order_id": "1"})

    def test_failing_handler_does_not_break_publish(self):
        bus = InMemoryEventBus()
        bus.subscribe("order.confirmed", MagicMock(side_effect=RuntimeError("boom")))

        bus.publish("order.confirmed", {})

        self.assertEqual(len(bus.published), 1)


@patch("infrastructure.events.redis_event_bus.redis.from_url")
class RedisEventBusTest(SimpleTestCase):
    def test_publish_uses_one_channel_per_event_type(self, from_url):
        client = from_url.return_value

        RedisEventBus("redis://localhost:6379/0").publish("order.created", {"order_id": "1"})

        channel, body = client.publish.call_args.args
        self.assertEqual(channel, "campus_market.events.order.created")
        self.assertEqual(json.loads(body)["payload"], {"order_id": "1"})

    def test_publish_swallows_redis_errors(self, from_url):
        from_url.return_value.publish.side_effect = redis.ConnectionError("down")

        RedisEventBus("redis://localhost:6379/0", channel_prefix="test").publish("order.created", {})

        self.assertEqual(from_url.return_value.publish.call_args.args[0], "test.order.created")

    def test_dispatch_skips_undecodable_messages(self, from_url):
        bus = RedisEventBus("redis://localhost:6379/0")
        handler = MagicMock()
        bus.subscribe("payment.succeeded", handler)

        bus.dispatch(b"not json")
        bus.dispatch(json.dumps(bus.envelope("payment.succeeded", {"order_ids": ["1"]})))

        handler.assert_called_once()
        self.assertEqual(handler.call_args.args[0]["payload"], {"order_ids": ["1"]})


class GetEventBusTest(SimpleTestCase):
    def tearDown(self):
        reset_event_bus()

    @override_settings(INFRASTRUCTURE={"PAYMENT_PROVIDER": "mock", "EVENT_BUS_BACKEND": "memory"})
    def test_memory_backend_from_settings(self):
        reset_event_bus()

        bus = get_event_bus()

        self.assertIsInstance(bus, InMemoryEventBus)
        self.assertIs(bus, get_event_bus())
