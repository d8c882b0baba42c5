"""Prometheus metrics for the broker connection and the sensors service."""

import threading
from typing import Final

from prometheus_client import (  # type: ignore[import-untyped]
    Counter,
    Gauge,
    start_http_server,
)

__all__ = [
    "record_connection_event",
    "record_decode_error",
    "record_derived_publish",
    "record_message_received",
    "record_reconnect_attempt",
    "set_dirty_sensors",
    "start_metrics_server",
]

dewpoint_connection_events_total: Final = Counter(  # type: ignore[assignment]
    "dewpoint_connection_events_total",
    "Connection events emitted by the connection manager",
    ["event"],
)

dewpoint_reconnect_attempts_total: Final = Counter(  # type: ignore[assignment]
    "dewpoint_reconnect_attempts_total",
    "Broker connect attempts",
    ["outcome"],
)

dewpoint_messages_received_total: Final = Counter(  # type: ignore[assignment]
    "dewpoint_messages_received_total",
    "Sensor messages applied to the registry",
    ["location", "field"],
)

dewpoint_decode_errors_total: Final = Counter(  # type: ignore[assignment]
    "dewpoint_decode_errors_total",
    "Sensor messages dropped before reaching the registry",
    ["reason"],
)

dewpoint_derived_publish_total: Final = Counter(  # type: ignore[assignment]
    "dewpoint_derived_publish_total",
    "Derived value publishes",
    ["kind", "outcome"],
)

dewpoint_dirty_sensors: Final = Gauge(  # type: ignore[assignment]
    "dewpoint_dirty_sensors",
    "Sensors with values waiting to be published",
)

_server_state = {"started": False}
_server_lock = threading.Lock()


def start_metrics_server(port: int) -> bool:
    """Start the Prometheus HTTP endpoint once; returns True if this call started it."""
    with _server_lock:
        if _server_state["started"]:
            return False
        start_http_server(port)  # type: ignore[no-untyped-call]
        _server_state["started"] = True
        return True


def record_connection_event(event: str) -> None:
    dewpoint_connection_events_total.labels(event=event).inc()  # type: ignore[no-untyped-call]


def record_reconnect_attempt(outcome: str) -> None:
    dewpoint_reconnect_attempts_total.labels(outcome=outcome).inc()  # type: ignore[no-untyped-call]


def record_message_received(location: str, field: str) -> None:
    dewpoint_messages_received_total.labels(location=location, field=field).inc()  # type: ignore[no-untyped-call]


def record_decode_error(reason: str) -> None:
    dewpoint_decode_errors_total.labels(reason=reason).inc()  # type: ignore[no-untyped-call]


def record_derived_publish(kind: str, outcome: str) -> None:
    dewpoint_derived_publish_total.labels(kind=kind, outcome=outcome).inc()  # type: ignore[no-untyped-call]


def set_dirty_sensors(count: int) -> None:
    dewpoint_dirty_sensors.set(count)  # type: ignore[no-untyped-call]
