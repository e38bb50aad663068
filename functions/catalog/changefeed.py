"""
Change feed abstraction: push notifications of mutations on a table.

Supports an in-process fan-out for tests/local runs and a Redis pub/sub
implementation for production. Events only signal that something changed;
subscribers are expected to re-fetch rather than apply the payload.
"""

from __future__ import annotations

import json
import logging
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Optional, Protocol, Union

import redis
from redis import exceptions as redis_exceptions

from catalog.errors import TransportError

logger = logging.getLogger(__name__)

ALL_EVENTS = "*"


class ChangeOperation(str, Enum):
    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


@dataclass(frozen=True)
class ChangeEvent:
    operation: ChangeOperation
    table: str
    schema: str = "public"
    record_id: Optional[Union[str, int]] = None
    commit_timestamp: float = field(default_factory=lambda: time.time())

    def as_dict(self) -> dict:
        return {
            "operation": self.operation.value,
            "table": self.table,
            "schema": self.schema,
            "record_id": self.record_id,
            "commit_timestamp": self.commit_timestamp,
        }

    @classmethod
    def from_dict(cls, payload: dict) -> "ChangeEvent":
        return cls(
            operation=ChangeOperation(payload["operation"]),
            table=payload["table"],
            schema=payload.get("schema", "public"),
            record_id=payload.get("record_id"),
            commit_timestamp=payload.get("commit_timestamp") or time.time(),
        )


@dataclass(frozen=True)
class ChangeScope:
    """Which changes a subscriber wants: one table, one schema, one or all operations."""

    table: str = "books"
    schema: str = "public"
    event: str = ALL_EVENTS

    def topic(self, prefix: str = "table:") -> str:
        return f"{prefix}{self.table}"

    def matches(self, event: ChangeEvent) -> bool:
        if event.table != self.table or event.schema != self.schema:
            return False
        return self.event == ALL_EVENTS or self.event == event.operation.value


ChangeCallback = Callable[[ChangeEvent], None]


class ChangeFeed(Protocol):
    """Operations the record stores and controllers need from the change channel."""

    def publish(self, event: ChangeEvent) -> None:
        ...

    def subscribe(self, scope: ChangeScope, callback: ChangeCallback) -> "Subscription":
        ...


class Subscription:
    """
    Handle for one subscription. Unsubscribed once `unsubscribe()` runs;
    usable as a context manager so the listener is released on every exit path.
    """

    def __init__(
        self,
        scope: ChangeScope,
        callback: ChangeCallback,
        release: Optional[Callable[["Subscription"], None]] = None,
    ):
        self.scope = scope
        self.callback = callback
        self._release = release
        self._active = True
        self._lock = threading.Lock()

    @property
    def active(self) -> bool:
        return self._active

    def deliver(self, event: ChangeEvent) -> None:
        if not self._active or not self.scope.matches(event):
            return
        try:
            self.callback(event)
        except Exception:
            # One failing subscriber must not break delivery to the others.
            logger.exception(
                "Change callback failed for %s on %s",
                event.operation.value,
                self.scope.table,
            )

    def unsubscribe(self) -> None:
        with self._lock:
            if not self._active:
                return
            self._active = False
        if self._release:
            self._release(self)
        logger.info("Unsubscribed from %s.%s", self.scope.schema, self.scope.table)

    def __enter__(self) -> "Subscription":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.unsubscribe()


class InMemoryChangeFeed:
    """
    In-process fan-out. Callbacks run on the publishing thread.

    Published events are kept in `published` only when `record_history` is set.
    """

    def __init__(self, record_history: bool = False):
        self.subscriptions: list[Subscription] = []
        self.published: list[ChangeEvent] = []
        self.record_history = record_history
        self._lock = threading.Lock()

    def publish(self, event: ChangeEvent) -> None:
        with self._lock:
            if self.record_history:
                self.published.append(event)
            targets = list(self.subscriptions)
        for subscription in targets:
            subscription.deliver(event)

    def subscribe(self, scope: ChangeScope, callback: ChangeCallback) -> Subscription:
        subscription = Subscription(scope, callback, release=self._remove)
        with self._lock:
            self.subscriptions.append(subscription)
        logger.info("Subscribed to %s.%s (event=%s)", scope.schema, scope.table, scope.event)
        return subscription

    def _remove(self, subscription: Subscription) -> None:
        with self._lock:
            if subscription in self.subscriptions:
                self.subscriptions.remove(subscription)


@dataclass
class RedisChangeFeed:
    """
    Redis pub/sub change channel. Each subscription owns its own pub/sub
    connection and listener thread, so releasing one leaves the others intact.
    """

    url: str
    topic_prefix: str = "table:"
    poll_interval_seconds: float = 0.1

    def __post_init__(self):
        self.client = redis.Redis.from_url(self.url)

    def publish(self, event: ChangeEvent) -> None:
        topic = ChangeScope(table=event.table, schema=event.schema).topic(
            self.topic_prefix
        )
        try:
            self.client.publish(topic, json.dumps(event.as_dict()))
        except redis_exceptions.RedisError as exc:
            logger.exception("Failed to publish change event on %s", topic)
            raise TransportError(f"publish to {topic} failed") from exc

    def subscribe(self, scope: ChangeScope, callback: ChangeCallback) -> Subscription:
        topic = scope.topic(self.topic_prefix)
        pubsub = self.client.pubsub(ignore_subscribe_messages=True)

        def release(_: Subscription) -> None:
            worker.stop()
            pubsub.close()

        subscription = Subscription(scope, callback, release=release)

        def handle(message: dict) -> None:
            try:
                event = ChangeEvent.from_dict(json.loads(message["data"]))
            except (KeyError, TypeError, ValueError):
                logger.warning("Ignoring malformed change message on %s", topic)
                return
            subscription.deliver(event)

        try:
            pubsub.subscribe(**{topic: handle})
            worker = pubsub.run_in_thread(
                sleep_time=self.poll_interval_seconds, daemon=True
            )
        except redis_exceptions.RedisError as exc:
            pubsub.close()
            logger.exception("Failed to subscribe to %s", topic)
            raise TransportError(f"subscribe to {topic} failed") from exc

        logger.info("Subscribed to %s (event=%s)", topic, scope.event)
        return subscription
