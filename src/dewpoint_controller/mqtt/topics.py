"""Topic listener and publisher: a narrow facade over the broker handle.

The sensors service talks to MQTT only through these two classes, which keeps it
testable against fakes.
"""

from __future__ import annotations

import asyncio
from collections.abc import Iterable
from typing import Any, Protocol, cast

from dewpoint_controller.const import MESSAGE_QUEUE_SIZE
from dewpoint_controller.exceptions import SubscribeError
from dewpoint_controller.logging_abstraction import get_logger
from dewpoint_controller.models import QoS, TopicMessage
from dewpoint_controller.mqtt.broker import ListenerHandle, MessageListener

__all__ = ["MessageStream", "Publisher", "TopicBroker", "TopicListener", "TopicPublisher"]

logger = get_logger(__name__)

_END_OF_STREAM = object()


class TopicBroker(Protocol):
    """Broker operations the topic adapters use."""

    @property
    def is_active(self) -> bool: ...

    def add_message_listener(self, listener: MessageListener) -> ListenerHandle[Any]: ...

    async def publish(self, topic: str, payload: bytes, qos: QoS, retain: bool = False) -> None: ...

    async def subscribe(self, topics: list[str], qos: QoS) -> None: ...

    async def unsubscribe(self, topics: list[str]) -> None: ...


class MessageStream:
    """Async iterator of :class:`TopicMessage`; ends when its listener shuts down."""

    def __init__(self, queue: asyncio.Queue[object]) -> None:
        self._queue: asyncio.Queue[object] = queue
        self._ended: bool = False

    def __aiter__(self) -> MessageStream:
        return self

    async def __anext__(self) -> TopicMessage:
        if self._ended:
            raise StopAsyncIteration
        item = await self._queue.get()
        if item is _END_OF_STREAM:
            self._ended = True
            raise StopAsyncIteration
        return cast("TopicMessage", item)


class TopicListener:
    """Delivers broker messages for a fixed topic set to one :class:`MessageStream`.

    Messages on other topics are ignored. The stream's queue is bounded: when it is
    full the broker's reader waits until the consumer catches up.
    """

    lp: str = "topic_listener:"

    def __init__(self, broker: TopicBroker, maxsize: int = MESSAGE_QUEUE_SIZE) -> None:
        self.broker: TopicBroker = broker
        self._queue: asyncio.Queue[object] = asyncio.Queue(maxsize=maxsize)
        self._topics: list[str] = []
        self._topic_set: frozenset[str] = frozenset()
        self._qos: QoS = QoS.AT_LEAST_ONCE
        self._handle: ListenerHandle[Any] | None = None
        self._stream: MessageStream | None = None
        self._shut_down: bool = False

    @property
    def topics(self) -> list[str]:
        return list(self._topics)

    async def listen(self, topics: Iterable[str], qos: QoS) -> MessageStream:
        """Register for ``topics`` and return the stream of matching messages.

        Subscribes right away when the broker is connected. A failed subscribe is
        logged; :meth:`resubscribe` retries it.
        """
        lp = f"{self.lp}listen:"
        if self._stream is not None:
            return self._stream
        self._topics = list(dict.fromkeys(topics))
        self._topic_set = frozenset(self._topics)
        self._qos = qos
        self._handle = self.broker.add_message_listener(self._on_message)
        self._stream = MessageStream(self._queue)
        logger.debug("%s Listening on %d topic(s) at QoS %d", lp, len(self._topics), int(qos))
        if self.broker.is_active:
            try:
                await self.resubscribe()
            except SubscribeError as e:
                logger.warning("%s Initial subscribe failed: %s", lp, e.reason)
        return self._stream

    async def _on_message(self, message: TopicMessage) -> None:
        if self._shut_down or message.topic not in self._topic_set:
            return
        await self._queue.put(message)

    async def resubscribe(self) -> None:
        """Subscribe to every stored topic again.

        Raises:
            SubscribeError: the broker is not connected or rejected the request

        """
        if not self._topics:
            return
        await self.broker.subscribe(self._topics, self._qos)
        logger.info("%s Subscribed to %d topic(s)", self.lp, len(self._topics))

    async def unsubscribe(self) -> None:
        """Unsubscribe from the stored topics; skipped while the broker is disconnected.

        Raises:
            SubscribeError: the broker rejected the request

        """
        lp = f"{self.lp}unsubscribe:"
        if not self._topics:
            return
        if not self.broker.is_active:
            logger.debug("%s Broker not connected, skipping unsubscribe", lp)
            return
        await self.broker.unsubscribe(self._topics)
        logger.info("%s Unsubscribed from %d topic(s)", lp, len(self._topics))

    def shutdown(self) -> None:
        """Remove the message listener and end the stream. Idempotent."""
        if self._shut_down:
            return
        self._shut_down = True
        if self._handle is not None:
            self._handle.close()
            self._handle = None
        if self._queue.full():
            dropped = self._queue.get_nowait()
            logger.debug("%s Dropped undelivered message at shutdown: %s", self.lp, dropped)
        self._queue.put_nowait(_END_OF_STREAM)


class Publisher(Protocol):
    """Anything that can publish a value to a topic; implemented by TopicPublisher."""

    async def publish(self, topic: str, payload: str | bytes | float, qos: QoS, retain: bool = False) -> None: ...


class TopicPublisher:
    """Publishes values to topics; str and float payloads are sent as UTF-8 text."""

    def __init__(self, broker: TopicBroker) -> None:
        self.broker: TopicBroker = broker

    async def publish(self, topic: str, payload: str | bytes | float, qos: QoS, retain: bool = False) -> None:
        """Publish one value.

        Raises:
            PublishError: the broker is not connected or the publish failed

        """
        data = payload if isinstance(payload, bytes) else str(payload).encode()
        await self.broker.publish(topic, data, qos, retain)
