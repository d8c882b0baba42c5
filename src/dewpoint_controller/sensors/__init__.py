"""Sensor tracking and the publish orchestrator."""

from dewpoint_controller.sensors.registry import SensorRegistry, decode_humidity, decode_temperature
from dewpoint_controller.sensors.service import SensorsService, ServiceState

__all__ = [
    "SensorRegistry",
    "SensorsService",
    "ServiceState",
    "decode_humidity",
    "decode_temperature",
]
