"""
Shared fixtures for unit tests.

Provides an in-memory broker handle, a scripted connection event source and helpers
for waiting on background tasks, so the MQTT layer and the sensors service can be
tested without a broker.
"""

import asyncio
import itertools
from collections.abc import Callable
from typing import Any

import pytest

from dewpoint_controller.config import ControllerSettings
from dewpoint_controller.exceptions import BrokerConnectionError, PublishError, SubscribeError
from dewpoint_controller.models import ConnectionEvent, QoS, Sensor, SensorLocation, TopicMessage
from dewpoint_controller.mqtt.broker import ListenerHandle
from dewpoint_controller.mqtt.retry_policy import RetryPolicy
from dewpoint_controller.sensors.registry import SensorRegistry


class FakeBroker:
    """In-memory stand-in for BrokerHandle.

    ``calls`` records every operation in order; ``publish_attempts`` counts publishes
    including failed ones.
    """

    def __init__(self) -> None:
        self.is_active = False
        self.shut_down = False
        self.connect_errors: list[Exception] = []
        self.connect_calls = 0
        self.clean_sessions: list[bool] = []
        self.publish_error: str | None = None
        self.subscribe_error: str | None = None
        self.publish_attempts = 0
        self.published: list[tuple[str, bytes, QoS, bool]] = []
        self.subscribed: list[tuple[list[str], QoS]] = []
        self.unsubscribed: list[list[str]] = []
        self.calls: list[str] = []
        self._keys = itertools.count()
        self._message_listeners: dict[int, Any] = {}
        self._close_listeners: dict[int, Any] = {}
        self._shutdown_listeners: dict[int, Any] = {}

    # listeners
    def add_message_listener(self, listener):
        key = next(self._keys)
        self._message_listeners[key] = listener
        return ListenerHandle(self._message_listeners, key, "message")

    def add_close_listener(self, listener):
        key = next(self._keys)
        self._close_listeners[key] = listener
        return ListenerHandle(self._close_listeners, key, "close")

    def add_shutdown_listener(self, listener):
        key = next(self._keys)
        self._shutdown_listeners[key] = listener
        return ListenerHandle(self._shutdown_listeners, key, "shutdown")

    @property
    def listener_count(self) -> int:
        return len(self._message_listeners) + len(self._close_listeners) + len(self._shutdown_listeners)

    # lifecycle
    async def connect(self, clean_session: bool) -> None:
        self.calls.append("connect")
        self.connect_calls += 1
        self.clean_sessions.append(clean_session)
        if self.shut_down:
            raise BrokerConnectionError("shut down", state="shutdown")
        if self.connect_errors:
            raise self.connect_errors.pop(0)
        self.is_active = True

    async def shutdown(self) -> None:
        self.calls.append("shutdown")
        if self.shut_down:
            return
        self.shut_down = True
        self.is_active = False
        for listener in list(self._shutdown_listeners.values()):
            listener()

    # traffic
    async def publish(self, topic: str, payload: bytes, qos: QoS, retain: bool = False) -> None:
        self.calls.append("publish")
        self.publish_attempts += 1
        if not self.is_active:
            raise PublishError(topic, "not connected")
        if self.publish_error:
            raise PublishError(topic, self.publish_error)
        self.published.append((topic, payload, qos, retain))

    async def subscribe(self, topics: list[str], qos: QoS) -> None:
        self.calls.append("subscribe")
        if not self.is_active:
            raise SubscribeError(topics, "not connected")
        if self.subscribe_error:
            raise SubscribeError(topics, self.subscribe_error)
        self.subscribed.append((list(topics), qos))

    async def unsubscribe(self, topics: list[str]) -> None:
        self.calls.append("unsubscribe")
        if not self.is_active:
            raise SubscribeError(topics, "not connected")
        self.unsubscribed.append(list(topics))

    # test drivers
    def drop(self, error: Exception | None = None) -> None:
        """Simulate the broker closing the connection."""
        self.is_active = False
        for listener in list(self._close_listeners.values()):
            listener(error)

    async def deliver(self, topic: str, payload: bytes) -> None:
        """Simulate an inbound message reaching the reader task."""
        message = TopicMessage(topic=topic, payload=payload)
        for listener in list(self._message_listeners.values()):
            await listener(message)

    def published_topics(self) -> list[str]:
        return [topic for topic, _, _, _ in self.published]


class ScriptedEvents:
    """Connection event source fed by the test; ``close()`` ends the stream."""

    def __init__(self) -> None:
        self._queue: asyncio.Queue[ConnectionEvent | None] = asyncio.Queue()

    def emit(self, event: ConnectionEvent) -> None:
        self._queue.put_nowait(event)

    def close(self) -> None:
        self._queue.put_nowait(None)

    async def events(self):
        while True:
            event = await self._queue.get()
            if event is None:
                return
            yield event


async def _wait_until(predicate: Callable[[], bool], timeout: float = 1.0) -> None:
    """Poll ``predicate`` until true; fail the test after ``timeout`` seconds."""
    async with asyncio.timeout(timeout):
        while not predicate():
            await asyncio.sleep(0.005)


@pytest.fixture
def fake_broker():
    """In-memory broker handle, initially disconnected."""
    return FakeBroker()


@pytest.fixture
def scripted_events():
    return ScriptedEvents()


@pytest.fixture
def immediate_retry():
    """Retry policy without delays, for reconnect tests."""
    return RetryPolicy(base_delay_seconds=0.0, max_delay_seconds=0.0, jitter_factor=0.0)


@pytest.fixture
def settings():
    """Settings with defaults and short timeouts."""
    return ControllerSettings(connect_timeout=0.2, flush_timeout=0.5, shutdown_timeout=2.0)


@pytest.fixture
def mixed_air_sensor():
    return Sensor.create(SensorLocation.MIXED_AIR)


@pytest.fixture
def registry(mixed_air_sensor):
    """Registry tracking only the mixed air sensor."""
    return SensorRegistry([mixed_air_sensor])


@pytest.fixture
def wait_until():
    """Async helper: ``await wait_until(lambda: cond)``."""
    return _wait_until
