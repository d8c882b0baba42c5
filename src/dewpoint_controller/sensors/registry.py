"""Sensor registry: current readings and dirty flags for every tracked sensor.

The registry is owned by the sensors service, which serializes all access through
its lock. Nothing here awaits.
"""

from __future__ import annotations

import math
from collections.abc import Iterable, Iterator

from dewpoint_controller.exceptions import DecodingError, SensorNotFoundError
from dewpoint_controller.logging_abstraction import get_logger
from dewpoint_controller.models import Sensor, SensorField, SensorLocation

__all__ = ["SensorRegistry", "decode_humidity", "decode_temperature"]

logger = get_logger(__name__)


def _decode_number(topic: str, payload: bytes) -> float:
    try:
        text = payload.decode("utf-8").strip()
    except UnicodeDecodeError as e:
        raise DecodingError(topic, payload, "payload is not UTF-8") from e
    try:
        return float(text)
    except ValueError as e:
        raise DecodingError(topic, payload, "payload is not a decimal number") from e


def decode_temperature(payload: bytes, topic: str = "") -> float:
    """Parse a temperature payload (°C) such as ``b"21.375"``.

    Raises:
        DecodingError: not UTF-8 or not a number

    """
    return _decode_number(topic, payload)


def decode_humidity(payload: bytes, topic: str = "") -> float:
    """Parse a relative humidity payload in percent.

    NaN is passed through; finite values outside 0..100 are rejected.

    Raises:
        DecodingError: not UTF-8, not a number, or out of range

    """
    value = _decode_number(topic, payload)
    if not math.isnan(value) and not 0.0 <= value <= 100.0:
        raise DecodingError(topic, payload, f"relative humidity {value} outside 0..100")
    return value


_DECODERS = {
    SensorField.TEMPERATURE: decode_temperature,
    SensorField.HUMIDITY: decode_humidity,
}


class SensorRegistry:
    """Tracked sensors keyed by location."""

    lp: str = "registry:"

    def __init__(self, sensors: Iterable[Sensor]) -> None:
        self._sensors: dict[SensorLocation, Sensor] = {}
        self._by_topic: dict[str, Sensor] = {}
        for sensor in sensors:
            self._sensors[sensor.location] = sensor
            for topic in sensor.topics.inbound:
                self._by_topic[topic] = sensor

    def __len__(self) -> int:
        return len(self._sensors)

    def __iter__(self) -> Iterator[Sensor]:
        return iter(self._sensors.values())

    @property
    def topics(self) -> list[str]:
        """Temperature and humidity topics of every sensor."""
        return list(self._by_topic)

    @property
    def needs_processed(self) -> bool:
        return any(sensor.needs_processed for sensor in self._sensors.values())

    def dirty_sensors(self) -> list[Sensor]:
        return [sensor for sensor in self._sensors.values() if sensor.needs_processed]

    def sensor(self, location: SensorLocation) -> Sensor:
        """Sensor at ``location``.

        Raises:
            SensorNotFoundError: no sensor is tracked there

        """
        try:
            return self._sensors[location]
        except KeyError:
            raise SensorNotFoundError(str(location.value)) from None

    def sensor_for_topic(self, topic: str) -> Sensor:
        sensor = self._by_topic.get(topic)
        if sensor is None:
            raise SensorNotFoundError(topic)
        return sensor

    def update(self, topic: str, field: SensorField, value: float) -> Sensor:
        """Assign ``value`` to the ``field`` reading of the sensor that owns ``topic``.

        An equal value leaves the dirty flag alone.

        Raises:
            SensorNotFoundError: no sensor owns ``topic``

        """
        sensor = self.sensor_for_topic(topic)
        sensor.tracked(field).value = value
        logger.debug(
            "%s %s %s = %s (needs_processed=%s)",
            self.lp,
            sensor.location.value,
            field.value,
            value,
            sensor.needs_processed,
        )
        return sensor

    @staticmethod
    def classify(topic: str) -> SensorField:
        """Reading kind of ``topic``, by substring.

        Raises:
            SensorNotFoundError: the topic names neither temperature nor humidity

        """
        if SensorField.TEMPERATURE.value in topic:
            return SensorField.TEMPERATURE
        if SensorField.HUMIDITY.value in topic:
            return SensorField.HUMIDITY
        raise SensorNotFoundError(topic)

    def apply(self, topic: str, payload: bytes) -> tuple[Sensor, SensorField]:
        """Classify, decode and store one inbound message.

        State is untouched when any step fails.

        Raises:
            SensorNotFoundError: the topic is not tracked
            DecodingError: the payload is not a valid reading

        """
        field = self.classify(topic)
        value = _DECODERS[field](payload, topic)
        return self.update(topic, field, value), field

    def has_processed(self, location: SensorLocation) -> None:
        """Clear both dirty flags of the sensor at ``location``.

        Raises:
            SensorNotFoundError: no sensor is tracked there

        """
        self.sensor(location).needs_processed = False
