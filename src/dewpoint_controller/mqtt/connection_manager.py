"""Connection lifecycle for the broker handle.

The manager is the only component that connects, disconnects or shuts down the
broker handle. It turns the handle's close and shutdown callbacks into an ordered
stream of :class:`ConnectionEvent` values and reconnects on its own after a drop.
"""

from __future__ import annotations

import asyncio
import contextlib
from collections.abc import AsyncIterator, Coroutine
from typing import Any, Protocol, cast

from dewpoint_controller.const import EVENT_QUEUE_SIZE
from dewpoint_controller.exceptions import BrokerConnectionError
from dewpoint_controller.logging_abstraction import get_logger
from dewpoint_controller.metrics import record_connection_event, record_reconnect_attempt
from dewpoint_controller.models import ConnectionEvent
from dewpoint_controller.mqtt.broker import CloseListener, ListenerHandle, ShutdownListener
from dewpoint_controller.mqtt.retry_policy import RetryPolicy

__all__ = ["ConnectionManager", "ManagedBroker"]

logger = get_logger(__name__)

_END_OF_STREAM = object()


class ManagedBroker(Protocol):
    """The part of :class:`~dewpoint_controller.mqtt.broker.BrokerHandle` the manager drives."""

    @property
    def is_active(self) -> bool: ...

    async def connect(self, clean_session: bool) -> None: ...

    async def shutdown(self) -> None: ...

    def add_close_listener(self, listener: CloseListener) -> ListenerHandle[Any]: ...

    def add_shutdown_listener(self, listener: ShutdownListener) -> ListenerHandle[Any]: ...


async def _wait_first(*aws: Coroutine[Any, Any, Any]) -> None:
    tasks = [asyncio.create_task(aw) for aw in aws]
    try:
        _ = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
    finally:
        for task in tasks:
            _ = task.cancel()
        _ = await asyncio.gather(*tasks, return_exceptions=True)


class ConnectionManager:
    """Keeps one broker handle connected and reports connection state.

    Events are deduplicated before they are queued: two identical events in a row are
    never queued. The queue is bounded and has one consumer. When it is full the
    oldest event is discarded, so reporting a state change never waits on the consumer.
    Consumers should still ignore an event equal to the last one they acted on.
    """

    lp: str = "conn_mgr:"

    def __init__(
        self,
        broker: ManagedBroker,
        clean_session: bool = False,
        retry_policy: RetryPolicy | None = None,
        queue_size: int = EVENT_QUEUE_SIZE,
    ) -> None:
        self.broker: ManagedBroker = broker
        self.clean_session: bool = clean_session
        self.retry_policy: RetryPolicy = retry_policy or RetryPolicy()
        self._events: asyncio.Queue[object] = asyncio.Queue(maxsize=queue_size)
        self._last_event: ConnectionEvent | None = None
        self._stream_closed: bool = False
        self._stream_drained: bool = False
        self._shutting_down: bool = False
        self._reconnect_task: asyncio.Task[None] | None = None
        self._handles: list[ListenerHandle[Any]] = []
        self._broker_shut_down: asyncio.Event = asyncio.Event()

    @property
    def last_event(self) -> ConnectionEvent | None:
        return self._last_event

    @property
    def is_shutting_down(self) -> bool:
        return self._shutting_down

    # -- event stream --------------------------------------------------------

    def _put(self, item: object) -> None:
        if self._events.full():
            dropped = self._events.get_nowait()
            logger.warning("%s Event queue full, dropped oldest event: %s", self.lp, dropped)
        self._events.put_nowait(item)

    def _emit(self, event: ConnectionEvent) -> None:
        if self._stream_closed:
            return
        if event is self._last_event:
            logger.debug("%s Suppressing repeated event: %s", self.lp, event.value)
            return
        self._last_event = event
        record_connection_event(event.value)
        logger.info("%s Connection event: %s", self.lp, event.value)
        self._put(event)

    def _end_stream(self) -> None:
        if self._stream_closed:
            return
        self._stream_closed = True
        self._put(_END_OF_STREAM)

    async def events(self) -> AsyncIterator[ConnectionEvent]:
        """Yield connection events until the stream ends after SHUTTING_DOWN."""
        while not self._stream_drained:
            item = await self._events.get()
            if item is _END_OF_STREAM:
                self._stream_drained = True
                return
            yield cast("ConnectionEvent", item)

    # -- connect / reconnect -------------------------------------------------

    def _register_listeners(self) -> None:
        if self._handles:
            return
        self._handles.append(self.broker.add_close_listener(self._on_close))
        self._handles.append(self.broker.add_shutdown_listener(self._on_broker_shutdown))

    async def connect(self) -> None:
        """Attempt the broker connect once.

        Emits CONNECTED on success. On failure emits DISCONNECTED and re-raises;
        retrying is left to the caller.

        Raises:
            BrokerConnectionError: the attempt failed or the manager is shutting down

        """
        lp = f"{self.lp}connect:"
        if self._shutting_down:
            raise BrokerConnectionError("connection manager is shutting down", state="shutdown")
        try:
            await self.broker.connect(self.clean_session)
        except BrokerConnectionError as e:
            record_reconnect_attempt("failure")
            logger.warning(
                "%s ✗ Connect failed: %s",
                lp,
                e.reason,
                extra={"state": e.state, "clean_session": self.clean_session},
            )
            self._emit(ConnectionEvent.DISCONNECTED)
            raise
        record_reconnect_attempt("success")
        self._register_listeners()
        self._emit(ConnectionEvent.CONNECTED)

    def _on_close(self, error: Exception | None) -> None:
        lp = f"{self.lp}on_close:"
        if self._shutting_down:
            return
        logger.warning("%s Broker connection closed: %s", lp, error)
        self._emit(ConnectionEvent.DISCONNECTED)
        if self._reconnect_task is None or self._reconnect_task.done():
            self._reconnect_task = asyncio.get_running_loop().create_task(
                self._reconnect(), name="ConnectionManager_RECONNECT"
            )

    def _on_broker_shutdown(self) -> None:
        if not self._shutting_down:
            logger.warning("%s Broker handle shut down outside the connection manager", self.lp)
        self._broker_shut_down.set()

    async def _reconnect(self) -> None:
        lp = f"{self.lp}reconnect:"
        attempt = 0
        while not self._shutting_down:
            delay = self.retry_policy.get_delay(attempt)
            logger.info(
                "%s → Reconnecting in %.2fs",
                lp,
                delay,
                extra={"attempt": attempt + 1},
            )
            await asyncio.sleep(delay)
            if self._shutting_down:
                return
            try:
                await self.connect()
            except BrokerConnectionError:
                attempt += 1
                continue
            logger.info("%s ✓ Reconnection successful", lp, extra={"attempts": attempt + 1})
            return

    # -- shutdown ------------------------------------------------------------

    async def shutdown(self) -> None:
        """Stop reconnecting, emit SHUTTING_DOWN, shut the broker down and end the stream.

        Safe to call more than once; later calls do nothing.
        """
        lp = f"{self.lp}shutdown:"
        if self._shutting_down:
            return
        self._shutting_down = True
        logger.info("%s → Shutting down connection manager", lp)

        task, self._reconnect_task = self._reconnect_task, None
        if task is not None and not task.done():
            _ = task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task

        for handle in self._handles:
            handle.close()
        self._handles.clear()

        self._emit(ConnectionEvent.SHUTTING_DOWN)
        await self.broker.shutdown()
        self._end_stream()
        logger.info("%s ✓ Connection manager stopped", lp)

    # -- supervised entry point ----------------------------------------------

    async def run(self, stop_event: asyncio.Event) -> None:
        """Connect, stay connected until ``stop_event`` is set, then shut down.

        The initial connect is retried with backoff; later drops are handled by the
        close listener. :meth:`shutdown` always runs on the way out.
        """
        lp = f"{self.lp}run:"
        attempt = 0
        try:
            while not stop_event.is_set():
                try:
                    await self.connect()
                    break
                except BrokerConnectionError:
                    delay = self.retry_policy.get_delay(attempt)
                    attempt += 1
                    logger.info("%s Initial connect failed, retrying in %.2fs", lp, delay, extra={"attempt": attempt})
                    with contextlib.suppress(TimeoutError):
                        _ = await asyncio.wait_for(stop_event.wait(), timeout=delay)

            if not stop_event.is_set():
                await _wait_first(stop_event.wait(), self._broker_shut_down.wait())
        finally:
            await self.shutdown()
