"""Sensors service: turns inbound sensor readings into published dew point and enthalpy.

The service listens on every sensor's temperature and humidity topic, stores readings
in the :class:`SensorRegistry`, and publishes derived values for every dirty sensor.
It follows the connection manager's events: resubscribe and catch up on CONNECTED,
hold off on DISCONNECTED, flush once and stop on SHUTTING_DOWN or an external stop.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Iterable
from enum import Enum
from typing import Protocol

from dewpoint_controller.const import DEWPOINT_FLUSH_TIMEOUT
from dewpoint_controller.correlation import correlation_scope
from dewpoint_controller.exceptions import (
    DecodingError,
    PublishError,
    SensorCountError,
    SensorNotFoundError,
    SubscribeError,
)
from dewpoint_controller.logging_abstraction import get_logger
from dewpoint_controller.metrics import (
    record_decode_error,
    record_derived_publish,
    record_message_received,
    set_dirty_sensors,
)
from dewpoint_controller.models import ConnectionEvent, DerivedReading, QoS, Sensor, TopicMessage
from dewpoint_controller.mqtt.topics import Publisher
from dewpoint_controller.psychrometrics import compute_for
from dewpoint_controller.sensors.registry import SensorRegistry

__all__ = ["ConnectionEvents", "ServiceState", "SensorsService"]

logger = get_logger(__name__)


class ServiceState(Enum):
    IDLE = "idle"
    SUBSCRIBING = "subscribing"
    LISTENING = "listening"
    UNSUBSCRIBING = "unsubscribing"
    FLUSHING = "flushing"
    STOPPED = "stopped"


class ConnectionEvents(Protocol):
    def events(self) -> AsyncIterator[ConnectionEvent]: ...


class Listener(Protocol):
    async def listen(self, topics: Iterable[str], qos: QoS) -> AsyncIterator[TopicMessage]: ...

    async def resubscribe(self) -> None: ...

    async def unsubscribe(self) -> None: ...

    def shutdown(self) -> None: ...


def _format(value: float) -> str:
    return str(round(value, 2))


class SensorsService:
    """Publish orchestrator for the tracked sensors.

    Registry updates and publish decisions happen under one lock, so two messages
    never race on a sensor and a message is never decoded or published twice.
    """

    lp: str = "sensors_svc:"

    def __init__(
        self,
        registry: SensorRegistry,
        connection: ConnectionEvents,
        listener: Listener,
        publisher: Publisher,
        flush_timeout: float = DEWPOINT_FLUSH_TIMEOUT,
    ) -> None:
        self.registry: SensorRegistry = registry
        self.connection: ConnectionEvents = connection
        self.listener: Listener = listener
        self.publisher: Publisher = publisher
        self.flush_timeout: float = flush_timeout
        self.state: ServiceState = ServiceState.IDLE
        self._lock: asyncio.Lock = asyncio.Lock()
        self._connected: bool = False
        self._last_event: ConnectionEvent | None = None
        self._shutdown_started: bool = False

    @property
    def is_connected(self) -> bool:
        return self._connected

    async def run(self, stop_event: asyncio.Event) -> None:
        """Serve until SHUTTING_DOWN arrives, the event stream ends, or ``stop_event`` is set.

        Raises:
            SensorCountError: the registry holds no sensors

        """
        lp = f"{self.lp}run:"
        if len(self.registry) == 0:
            raise SensorCountError

        self.state = ServiceState.SUBSCRIBING
        stream = await self.listener.listen(self.registry.topics, QoS.AT_LEAST_ONCE)
        self.state = ServiceState.LISTENING
        logger.info("%s Listening for %d sensor(s)", lp, len(self.registry))

        tasks = [
            asyncio.create_task(self._consume_events(), name="SensorsService_EVENTS"),
            asyncio.create_task(self._consume_messages(stream), name="SensorsService_MESSAGES"),
            asyncio.create_task(stop_event.wait(), name="SensorsService_STOP"),
        ]
        try:
            done, _ = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
            for task in done:
                if not task.cancelled() and task.exception() is not None:
                    logger.error("%s Task %s failed: %s", lp, task.get_name(), task.exception())
        finally:
            for task in tasks:
                _ = task.cancel()
            _ = await asyncio.gather(*tasks, return_exceptions=True)
            await self._shutdown()

    # -- connection events ---------------------------------------------------

    async def _consume_events(self) -> None:
        async for event in self.connection.events():
            if event is ConnectionEvent.SHUTTING_DOWN:
                logger.info("%s Connection manager is shutting down", self.lp)
                self._connected = False
                return
            await self.handle_event(event)
        logger.info("%s Connection event stream ended", self.lp)

    async def handle_event(self, event: ConnectionEvent) -> None:
        lp = f"{self.lp}event:"
        if event is self._last_event:
            logger.debug("%s Ignoring repeated %s", lp, event.value)
            return
        self._last_event = event

        if event is ConnectionEvent.CONNECTED:
            self._connected = True
            self.state = ServiceState.SUBSCRIBING
            try:
                await self.listener.resubscribe()
            except SubscribeError as e:
                logger.warning("%s Resubscribe failed, waiting for next connect: %s", lp, e.reason)
            self.state = ServiceState.LISTENING
            async with self._lock:
                _ = await self._publish_updates()
        elif event is ConnectionEvent.DISCONNECTED:
            self._connected = False
            self.state = ServiceState.UNSUBSCRIBING
            try:
                await self.listener.unsubscribe()
            except SubscribeError as e:
                logger.debug("%s Unsubscribe after disconnect failed: %s", lp, e.reason)
            self.state = ServiceState.LISTENING
            logger.info(
                "%s Publishing paused while disconnected",
                lp,
                extra={"dirty_sensors": len(self.registry.dirty_sensors())},
            )

    # -- messages ------------------------------------------------------------

    async def _consume_messages(self, stream: AsyncIterator[TopicMessage]) -> None:
        async for message in stream:
            await self.handle_message(message)

    async def handle_message(self, message: TopicMessage) -> None:
        lp = f"{self.lp}message:"
        with correlation_scope():
            async with self._lock:
                try:
                    sensor, field = self.registry.apply(message.topic, message.payload)
                except DecodingError as e:
                    record_decode_error("invalid_payload")
                    logger.warning("%s Dropping message: %s", lp, e)
                    return
                except SensorNotFoundError as e:
                    record_decode_error("unknown_topic")
                    logger.error("%s Dropping message for untracked topic: %s", lp, e.key)
                    return
                record_message_received(sensor.location.value, field.value)
                if self._connected:
                    _ = await self._publish_updates()
                set_dirty_sensors(len(self.registry.dirty_sensors()))

    # -- publishing ----------------------------------------------------------

    async def _publish_updates(self) -> int:
        """Publish derived values for every dirty sensor; caller holds the lock.

        A sensor whose publish fails stays dirty and is retried on the next sweep.
        Returns the number of values published.
        """
        lp = f"{self.lp}publish:"
        published = 0
        for sensor in self.registry.dirty_sensors():
            try:
                published += await self._publish_reading(sensor, compute_for(sensor))
            except PublishError as e:
                logger.warning(
                    "%s ✗ Publish failed for %s, will retry: %s",
                    lp,
                    sensor.location.value,
                    e.reason,
                    extra={"topic": e.topic},
                )
                continue
            self.registry.has_processed(sensor.location)
        set_dirty_sensors(len(self.registry.dirty_sensors()))
        return published

    async def _publish_reading(self, sensor: Sensor, reading: DerivedReading | None) -> int:
        lp = f"{self.lp}publish:"
        if reading is None:
            logger.debug("%s %s: waiting for both readings", lp, sensor.location.value)
            return 0
        count = 0
        for kind, topic, value in (
            ("dew_point", sensor.topics.dew_point, reading.dew_point),
            ("enthalpy", sensor.topics.enthalpy, reading.enthalpy),
        ):
            if value is None:
                continue
            try:
                await self.publisher.publish(topic, _format(value), QoS.EXACTLY_ONCE, retain=True)
            except PublishError:
                record_derived_publish(kind, "failure")
                raise
            record_derived_publish(kind, "success")
            count += 1
            logger.debug("%s %s = %s -> %s", lp, kind, _format(value), topic)
        return count

    # -- shutdown ------------------------------------------------------------

    async def _flush(self) -> int:
        async with self._lock:
            return await self._publish_updates()

    async def _shutdown(self) -> None:
        lp = f"{self.lp}shutdown:"
        if self._shutdown_started:
            return
        self._shutdown_started = True
        self._connected = False
        self.state = ServiceState.FLUSHING

        with correlation_scope():
            dirty = len(self.registry.dirty_sensors())
            logger.info("%s → Final flush", lp, extra={"dirty_sensors": dirty})
            try:
                published = await asyncio.wait_for(self._flush(), timeout=self.flush_timeout)
            except TimeoutError:
                logger.warning("%s Final flush timed out after %.1fs", lp, self.flush_timeout)
            else:
                logger.info("%s ✓ Final flush published %d value(s)", lp, published)

            try:
                await asyncio.wait_for(self.listener.unsubscribe(), timeout=self.flush_timeout)
            except TimeoutError:
                logger.warning("%s Unsubscribe timed out after %.1fs", lp, self.flush_timeout)
            except SubscribeError as e:
                logger.warning("%s Unsubscribe failed: %s", lp, e.reason)

            self.listener.shutdown()
            self.state = ServiceState.STOPPED
            logger.info("%s Sensors service stopped", lp)
