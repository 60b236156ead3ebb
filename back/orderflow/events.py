"""
Outbound events.

Services hand events to an `EventPublisher` only after their transaction has
committed. The core never knows how events travel; in production they go to
Redis pub/sub, where the WebSocket bridge picks them up.
"""

import json
import logging
from enum import Enum
from typing import Any, Protocol

import redis
from fastapi import Request
from sqlmodel import SQLModel

logger = logging.getLogger(__name__)


class EventType(str, Enum):
    new_order = "newOrder"
    order_status_update = "orderStatusUpdate"
    stock_update = "stockUpdate"
    table_cleared = "tableCleared"
    discount_applied = "discountApplied"
    table_status_update = "tableStatusUpdate"


class Event(SQLModel):
    type: EventType
    payload: dict[str, Any]

    def to_json(self) -> str:
        return json.dumps(self.model_dump(mode="json"))


class EventPublisher(Protocol):
    def publish(self, event: Event) -> None: ...


class RedisEventPublisher:
    """Fire-and-forget publish to a single Redis channel."""

    def __init__(self, client: redis.Redis, channel: str):
        self.client = client
        self.channel = channel

    @classmethod
    def from_url(cls, redis_url: str, channel: str) -> "RedisEventPublisher":
        return cls(redis.from_url(redis_url), channel)

    def publish(self, event: Event) -> None:
        try:
            self.client.publish(self.channel, event.to_json())
        except redis.RedisError as e:
            # The transaction is already committed; observers just miss this one
            logger.warning(f"Failed to publish {event.type.value} event: {e}")


class LoggingEventPublisher:
    """Used when Redis is not configured."""

    def publish(self, event: Event) -> None:
        logger.info(f"Event {event.type.value}: {event.to_json()}")


class InMemoryEventPublisher:
    def __init__(self):
        self.events: list[Event] = []

    def publish(self, event: Event) -> None:
        self.events.append(event)

    def of_type(self, event_type: EventType) -> list[Event]:
        return [e for e in self.events if e.type == event_type]

    def clear(self) -> None:
        self.events.clear()


def build_publisher(redis_url: str, channel: str) -> EventPublisher:
    """Redis publisher when Redis answers, a logging publisher otherwise."""
    if not redis_url:
        return LoggingEventPublisher()
    publisher = RedisEventPublisher.from_url(redis_url, channel)
    try:
        publisher.client.ping()
    except redis.RedisError as e:
        logger.warning(f"Redis unavailable at {redis_url} ({e}), events will only be logged")
        return LoggingEventPublisher()
    return publisher


def get_publisher(request: Request) -> EventPublisher:
    return request.app.state.publisher
