"""Event envelopes and publishers."""

import json
import logging

import redis

from orderflow.events import (
    Event,
    EventType,
    InMemoryEventPublisher,
    LoggingEventPublisher,
    RedisEventPublisher,
    build_publisher,
)


class RecordingRedis:
    def __init__(self, fail=False):
        self.fail = fail
        self.published = []

    def publish(self, channel, message):
        if self.fail:
            raise redis.ConnectionError("connection refused")
        self.published.append((channel, message))
        return 1


def test_event_envelope():
    event = Event(type=EventType.table_cleared, payload={"table_name": "A1", "order_ids": [1, 2]})
    assert json.loads(event.to_json()) == {
        "type": "tableCleared",
        "payload": {"table_name": "A1", "order_ids": [1, 2]},
    }


def test_redis_publisher_sends_json_to_channel():
    client = RecordingRedis()
    publisher = RedisEventPublisher(client, "orderflow:events")

    publisher.publish(Event(type=EventType.new_order, payload={"order": {"id": 7}}))

    [(channel, message)] = client.published
    assert channel == "orderflow:events"
    assert json.loads(message)["type"] == "newOrder"


def test_redis_failure_is_logged_not_raised(caplog):
    publisher = RedisEventPublisher(RecordingRedis(fail=True), "orderflow:events")

    with caplog.at_level(logging.WARNING, logger="orderflow.events"):
        publisher.publish(Event(type=EventType.stock_update, payload={"items": []}))

    assert "Failed to publish stockUpdate" in caplog.text


def test_logging_publisher(caplog):
    with caplog.at_level(logging.INFO, logger="orderflow.events"):
        LoggingEventPublisher().publish(Event(type=EventType.discount_applied, payload={"table_name": "A1"}))
    assert "discountApplied" in caplog.text


def test_in_memory_publisher_filters_by_type():
    publisher = InMemoryEventPublisher()
    publisher.publish(Event(type=EventType.new_order, payload={}))
    publisher.publish(Event(type=EventType.stock_update, payload={}))

    assert len(publisher.of_type(EventType.stock_update)) == 1
    publisher.clear()
    assert publisher.events == []


def test_build_publisher_without_redis_url():
    assert isinstance(build_publisher("", "orderflow:events"), LoggingEventPublisher)


def test_build_publisher_falls_back_when_redis_is_down():
    # Nothing listens on port 1
    assert isinstance(build_publisher("redis://127.0.0.1:1/0", "orderflow:events"), LoggingEventPublisher)
