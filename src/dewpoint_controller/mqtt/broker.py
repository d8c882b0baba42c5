"""Broker handle: the single owner of the aiomqtt client.

Exposes connect/disconnect/shutdown plus publish/subscribe/unsubscribe, and lets
other components register message, close and shutdown listeners. Each registration
returns a :class:`ListenerHandle` that the caller closes when done.
"""

from __future__ import annotations

import asyncio
import contextlib
import itertools
from collections.abc import Awaitable, Callable
from typing import Any, Generic, TypeVar

import aiomqtt

from dewpoint_controller.config import ControllerSettings
from dewpoint_controller.exceptions import BrokerConnectionError, PublishError, SubscribeError
from dewpoint_controller.logging_abstraction import get_logger
from dewpoint_controller.models import QoS, TopicMessage

__all__ = [
    "BrokerHandle",
    "CloseListener",
    "ListenerHandle",
    "MessageListener",
    "ShutdownListener",
]

logger = get_logger(__name__)

MessageListener = Callable[[TopicMessage], Awaitable[None]]
CloseListener = Callable[[Exception | None], None]
ShutdownListener = Callable[[], None]

L = TypeVar("L")


class ListenerHandle(Generic[L]):
    """A listener registration; ``close()`` removes it. Safe to close more than once."""

    def __init__(self, registry: dict[int, L], key: int, kind: str) -> None:
        self._registry: dict[int, L] = registry
        self._key: int = key
        self.kind: str = kind

    @property
    def closed(self) -> bool:
        return self._key not in self._registry

    def close(self) -> None:
        _ = self._registry.pop(self._key, None)

    def __enter__(self) -> ListenerHandle[L]:
        return self

    def __exit__(self, *_exc: object) -> None:
        self.close()


def _payload_bytes(payload: Any) -> bytes:
    if payload is None:
        return b""
    if isinstance(payload, bytes | bytearray):
        return bytes(payload)
    return str(payload).encode()


class BrokerHandle:
    """Connection to one MQTT broker.

    A new ``aiomqtt.Client`` is built for every connect attempt. While connected, a
    reader task iterates the client's messages and awaits each message listener in
    turn, so a slow consumer slows the reader instead of growing an unbounded buffer.
    When the connection drops the reader marks the handle inactive and calls the
    close listeners; it never reconnects by itself.
    """

    lp: str = "broker:"

    def __init__(
        self,
        settings: ControllerSettings,
        client_factory: Callable[..., aiomqtt.Client] | None = None,
    ) -> None:
        self.settings: ControllerSettings = settings
        self.connect_timeout: float = settings.connect_timeout
        self._client_factory: Callable[..., aiomqtt.Client] = client_factory or self._build_client
        self._client: aiomqtt.Client | None = None
        self._reader_task: asyncio.Task[None] | None = None
        self._connect_lock: asyncio.Lock = asyncio.Lock()
        self._shut_down: bool = False
        self._keys = itertools.count()
        self._message_listeners: dict[int, MessageListener] = {}
        self._close_listeners: dict[int, CloseListener] = {}
        self._shutdown_listeners: dict[int, ShutdownListener] = {}

    def _build_client(self, clean_session: bool) -> aiomqtt.Client:
        return aiomqtt.Client(
            hostname=self.settings.mqtt_host,
            port=self.settings.mqtt_port,
            username=self.settings.mqtt_username,
            password=self.settings.mqtt_password,
            identifier=self.settings.mqtt_identifier,
            clean_session=clean_session,
            keepalive=self.settings.mqtt_keepalive,
            timeout=self.connect_timeout,
        )

    @property
    def is_active(self) -> bool:
        """Check if there is a live connection to the broker."""
        return self._client is not None

    @property
    def is_shut_down(self) -> bool:
        return self._shut_down

    # -- listeners -----------------------------------------------------------

    def add_message_listener(self, listener: MessageListener) -> ListenerHandle[MessageListener]:
        key = next(self._keys)
        self._message_listeners[key] = listener
        return ListenerHandle(self._message_listeners, key, "message")

    def add_close_listener(self, listener: CloseListener) -> ListenerHandle[CloseListener]:
        key = next(self._keys)
        self._close_listeners[key] = listener
        return ListenerHandle(self._close_listeners, key, "close")

    def add_shutdown_listener(self, listener: ShutdownListener) -> ListenerHandle[ShutdownListener]:
        key = next(self._keys)
        self._shutdown_listeners[key] = listener
        return ListenerHandle(self._shutdown_listeners, key, "shutdown")

    # -- lifecycle -----------------------------------------------------------

    async def connect(self, clean_session: bool) -> None:
        """Connect once; a no-op when already connected.

        Raises:
            BrokerConnectionError: the broker refused or did not answer within the connect timeout,
                or the handle has been shut down

        """
        lp = f"{self.lp}connect:"
        if self._shut_down:
            raise BrokerConnectionError("broker handle has been shut down", state="shutdown")
        async with self._connect_lock:
            if self.is_active:
                logger.debug("%s Already connected, skipping", lp)
                return
            client = self._client_factory(clean_session=clean_session)
            logger.debug(
                "%s Connecting to MQTT broker %s:%s (clean_session=%s)...",
                lp,
                self.settings.mqtt_host,
                self.settings.mqtt_port,
                clean_session,
            )
            try:
                _ = await asyncio.wait_for(client.__aenter__(), timeout=self.connect_timeout)
            except TimeoutError as e:
                await self._abandon(client)
                raise BrokerConnectionError(f"no answer within {self.connect_timeout}s", state="connecting") from e
            except (aiomqtt.MqttError, OSError) as e:
                # -> [Errno 111] Connection refused
                # [code:134] Bad user name or password
                raise BrokerConnectionError(str(e), state="connecting") from e

            self._client = client
            self._reader_task = asyncio.create_task(self._read_messages(client), name="BrokerHandle_READER")
            logger.info(
                "%s Connected to MQTT broker: %s port: %s",
                lp,
                self.settings.mqtt_host,
                self.settings.mqtt_port,
            )

    async def _abandon(self, client: aiomqtt.Client) -> None:
        """Exit a client whose connect timed out, so its socket and session do not linger."""
        lp = f"{self.lp}connect:"
        logger.warning("%s ✗ No CONNACK within %.1fs, closing abandoned client", lp, self.connect_timeout)
        with contextlib.suppress(aiomqtt.MqttError, OSError, TimeoutError):
            await asyncio.wait_for(client.__aexit__(None, None, None), timeout=self.connect_timeout)

    async def _read_messages(self, client: aiomqtt.Client) -> None:
        lp = f"{self.lp}reader:"
        error: Exception | None = None
        try:
            async for message in client.messages:
                msg = TopicMessage(topic=message.topic.value, payload=_payload_bytes(message.payload))
                for listener in list(self._message_listeners.values()):
                    try:
                        await listener(msg)
                    except asyncio.CancelledError:
                        raise
                    except Exception:
                        logger.exception("%s Message listener failed for topic: %s", lp, msg.topic)
        except aiomqtt.MqttError as e:
            error = e

        if client is not self._client:
            # disconnect() already detached this client
            return
        logger.warning("%s Connection to broker lost: %s", lp, error)
        self._client = None
        self._reader_task = None
        with contextlib.suppress(aiomqtt.MqttError, OSError):
            await client.__aexit__(None, None, None)
        for listener in list(self._close_listeners.values()):
            try:
                listener(error)
            except Exception:
                logger.exception("%s Close listener failed", lp)

    async def disconnect(self) -> None:
        """Disconnect without notifying close listeners."""
        lp = f"{self.lp}disconnect:"
        client, reader = self._client, self._reader_task
        self._client = None
        self._reader_task = None
        if reader is not None and not reader.done():
            _ = reader.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await reader
        if client is None:
            return
        try:
            logger.debug("%s Disconnecting from broker...", lp)
            await client.__aexit__(None, None, None)
        except (aiomqtt.MqttError, OSError) as e:
            logger.warning("%s MQTT disconnect failed: %s", lp, e)
        else:
            logger.info("%s Disconnected from MQTT broker", lp)

    async def shutdown(self) -> None:
        """Disconnect for good and notify shutdown listeners. Idempotent."""
        if self._shut_down:
            return
        self._shut_down = True
        await self.disconnect()
        for listener in list(self._shutdown_listeners.values()):
            try:
                listener()
            except Exception:
                logger.exception("%s Shutdown listener failed", self.lp)

    # -- traffic -------------------------------------------------------------

    async def publish(self, topic: str, payload: bytes, qos: QoS, retain: bool = False) -> None:
        """Publish ``payload`` to ``topic``.

        Raises:
            PublishError: not connected, or the broker did not acknowledge

        """
        client = self._client
        if client is None:
            raise PublishError(topic, "not connected")
        try:
            await client.publish(topic, payload, qos=int(qos), retain=retain)
        except aiomqtt.MqttError as e:
            raise PublishError(topic, str(e)) from e

    async def subscribe(self, topics: list[str], qos: QoS) -> None:
        """Subscribe to each topic at ``qos``.

        Raises:
            SubscribeError: not connected, or the broker rejected the request

        """
        client = self._client
        if client is None:
            raise SubscribeError(topics, "not connected")
        try:
            for topic in topics:
                _ = await client.subscribe(topic, qos=int(qos))
        except aiomqtt.MqttError as e:
            raise SubscribeError(topics, str(e)) from e

    async def unsubscribe(self, topics: list[str]) -> None:
        """Unsubscribe from ``topics``.

        Raises:
            SubscribeError: not connected, or the broker rejected the request

        """
        client = self._client
        if client is None:
            raise SubscribeError(topics, "not connected")
        try:
            await client.unsubscribe(topics)
        except aiomqtt.MqttError as e:
            raise SubscribeError(topics, str(e)) from e
