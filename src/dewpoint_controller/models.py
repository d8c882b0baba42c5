"""Core data types: connection events, tracked sensor values, sensors and relays."""

from __future__ import annotations

import math
from collections.abc import Callable
from dataclasses import InitVar, dataclass, field
from enum import Enum, IntEnum
from typing import Generic, TypeVar

from dewpoint_controller.const import DEFAULT_ALTITUDE_METERS, DEFAULT_TOPIC_PREFIX

__all__ = [
    "ConnectionEvent",
    "DerivedReading",
    "QoS",
    "Relay",
    "RelayCommand",
    "Sensor",
    "SensorField",
    "SensorLocation",
    "SensorTopics",
    "TopicMessage",
    "TrackedValue",
]

T = TypeVar("T")


class ConnectionEvent(Enum):
    """Broker connection state as reported by the connection manager.

    Level-state, not edge-triggered: CONNECTED means "connected as of now" and may be
    reported more than once in a row.
    """

    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    SHUTTING_DOWN = "shutting_down"


class QoS(IntEnum):
    """MQTT delivery guarantee."""

    AT_MOST_ONCE = 0
    AT_LEAST_ONCE = 1
    EXACTLY_ONCE = 2


@dataclass(frozen=True, slots=True)
class TopicMessage:
    """An inbound message delivered by a topic listener."""

    topic: str
    payload: bytes


def _equals(lhs: object, rhs: object) -> bool:
    return lhs == rhs


class TrackedValue(Generic[T]):
    """An optional value that remembers whether it changed since it was last processed.

    Assigning a value equal to the current one is ignored, so redelivered retained
    messages do not cause a republish. Equality is injectable; with the default ``==``
    NaN never compares equal and every NaN assignment marks the value dirty.
    """

    __slots__ = ("_is_equal", "_value", "needs_processed")

    def __init__(
        self,
        value: T | None = None,
        needs_processed: bool = False,
        is_equal: Callable[[T | None, T | None], bool] = _equals,
    ) -> None:
        self._value: T | None = value
        self._is_equal: Callable[[T | None, T | None], bool] = is_equal
        self.needs_processed: bool = needs_processed

    @property
    def value(self) -> T | None:
        return self._value

    @value.setter
    def value(self, new_value: T | None) -> None:
        if self._is_equal(new_value, self._value):
            return
        self._value = new_value
        self.needs_processed = True

    def __repr__(self) -> str:
        return f"TrackedValue({self._value!r}, needs_processed={self.needs_processed})"


class SensorLocation(str, Enum):
    """Physical location of a temperature/humidity sensor; also its topic key."""

    MIXED_AIR = "mixed_air"
    POST_COIL = "post_coil"
    RETURN = "return"
    SUPPLY = "supply"


class SensorField(str, Enum):
    """Inbound reading kinds."""

    TEMPERATURE = "temperature"
    HUMIDITY = "humidity"


@dataclass(frozen=True, slots=True)
class SensorTopics:
    """The four topics of one sensor: two read, two published."""

    temperature: str
    humidity: str
    dew_point: str
    enthalpy: str

    @classmethod
    def for_location(cls, location: SensorLocation, prefix: str | None = DEFAULT_TOPIC_PREFIX) -> SensorTopics:
        """Build ``{prefix}/sensor/{location}_{kind}/state`` topics."""
        prefix = (prefix or "").rstrip("/")
        base = f"{prefix}/sensor/{location.value}" if prefix else f"sensor/{location.value}"
        return cls(
            temperature=f"{base}_temperature/state",
            humidity=f"{base}_humidity/state",
            dew_point=f"{base}_dew_point/state",
            enthalpy=f"{base}_enthalpy/state",
        )

    @property
    def inbound(self) -> tuple[str, str]:
        return self.temperature, self.humidity


@dataclass(frozen=True, slots=True)
class DerivedReading:
    """Dew point (°C) and moist air enthalpy (kJ/kg dry air).

    A member is None when the psychrometric calculation rejected the inputs.
    """

    dew_point: float | None
    enthalpy: float | None


@dataclass(eq=False)
class Sensor:
    """A temperature (°C) and relative humidity (%) sensor at a fixed location.

    ``altitude`` is in meters and only feeds the enthalpy calculation.
    """

    location: SensorLocation
    altitude: float = DEFAULT_ALTITUDE_METERS
    prefix: InitVar[str | None] = DEFAULT_TOPIC_PREFIX
    temperature: TrackedValue[float] = field(default_factory=TrackedValue)
    humidity: TrackedValue[float] = field(default_factory=TrackedValue)
    topics: SensorTopics = field(init=False)

    def __post_init__(self, prefix: str | None) -> None:
        self.topics = SensorTopics.for_location(self.location, prefix)

    @classmethod
    def create(
        cls,
        location: SensorLocation,
        *,
        altitude: float = DEFAULT_ALTITUDE_METERS,
        temperature: float | None = None,
        humidity: float | None = None,
        needs_processed: bool = False,
        prefix: str | None = DEFAULT_TOPIC_PREFIX,
    ) -> Sensor:
        """Construct a sensor with topics derived from ``prefix``."""
        return cls(
            location=location,
            altitude=altitude,
            prefix=prefix,
            temperature=TrackedValue(temperature, needs_processed=needs_processed),
            humidity=TrackedValue(humidity, needs_processed=needs_processed),
        )

    @property
    def id(self) -> SensorLocation:
        return self.location

    @property
    def needs_processed(self) -> bool:
        return self.temperature.needs_processed or self.humidity.needs_processed

    @needs_processed.setter
    def needs_processed(self, value: bool) -> None:
        self.temperature.needs_processed = value
        self.humidity.needs_processed = value

    def tracked(self, kind: SensorField) -> TrackedValue[float]:
        return self.temperature if kind is SensorField.TEMPERATURE else self.humidity

    @property
    def inputs_usable(self) -> bool:
        """Both readings present and neither is NaN."""
        t, h = self.temperature.value, self.humidity.value
        return t is not None and h is not None and not math.isnan(t) and not math.isnan(h)


class RelayCommand(str, Enum):
    """Payloads understood by relay command topics."""

    ON = "on"
    OFF = "off"
    TOGGLE = "toggle"


@dataclass(frozen=True, slots=True)
class Relay:
    """A relay commanded through an MQTT topic."""

    name: str
    topic: str
