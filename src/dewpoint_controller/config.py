"""Runtime configuration: environment settings and the optional YAML sensor file."""

from __future__ import annotations

import os
from collections.abc import Mapping
from enum import Enum
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ValidationError

from dewpoint_controller.const import (
    DEFAULT_ALTITUDE_METERS,
    DEFAULT_TOPIC_PREFIX,
    DEWPOINT_CONNECT_TIMEOUT,
    DEWPOINT_FLUSH_TIMEOUT,
    DEWPOINT_SHUTDOWN_TIMEOUT,
    RELAY_DEHUMIDIFICATION_1,
    RELAY_DEHUMIDIFICATION_2,
    RELAY_HUMIDIFICATION,
    YES_ANSWER,
)
from dewpoint_controller.logging_abstraction import get_logger
from dewpoint_controller.models import Relay, Sensor, SensorLocation

__all__ = [
    "AppEnv",
    "ControllerSettings",
    "SensorEntry",
    "build_relays",
    "build_sensors",
    "parse_sensor_config",
]

logger = get_logger(__name__)


class AppEnv(str, Enum):
    DEVELOPMENT = "development"
    PRODUCTION = "production"
    STAGING = "staging"
    TESTING = "testing"


class ControllerSettings(BaseModel):
    """Settings read from the process environment.

    Variable names match the deployment's existing ``.env`` files (``MQTT_HOST``,
    ``MQTT_PORT``, ...); controller specific knobs use the ``DEWPOINT_`` prefix.
    """

    app_env: AppEnv = AppEnv.DEVELOPMENT
    mqtt_host: str = "127.0.0.1"
    mqtt_port: int = 1883
    mqtt_identifier: str = "dewPoint-controller"
    mqtt_username: str | None = None
    mqtt_password: str | None = None
    mqtt_clean_session: bool = False
    mqtt_keepalive: int = 60
    topic_prefix: str = DEFAULT_TOPIC_PREFIX
    connect_timeout: float = DEWPOINT_CONNECT_TIMEOUT
    flush_timeout: float = DEWPOINT_FLUSH_TIMEOUT
    shutdown_timeout: float = DEWPOINT_SHUTDOWN_TIMEOUT
    config_file: Path | None = None
    metrics_port: int | None = None

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> ControllerSettings:
        """Build settings from ``environ`` (defaults to ``os.environ``).

        Raises:
            pydantic.ValidationError: a variable holds a value of the wrong type

        """
        env = os.environ if environ is None else environ

        def _get(name: str) -> str | None:
            value = env.get(name)
            return value if value not in (None, "") else None

        values: dict[str, Any] = {
            "app_env": _get("APP_ENV"),
            "mqtt_host": _get("MQTT_HOST"),
            "mqtt_port": _get("MQTT_PORT"),
            "mqtt_identifier": _get("MQTT_IDENTIFIER"),
            "mqtt_username": _get("MQTT_USERNAME"),
            "mqtt_password": _get("MQTT_PASSWORD"),
            "mqtt_keepalive": _get("MQTT_KEEPALIVE"),
            "topic_prefix": _get("DEWPOINT_TOPIC_PREFIX"),
            "connect_timeout": _get("DEWPOINT_CONNECT_TIMEOUT"),
            "flush_timeout": _get("DEWPOINT_FLUSH_TIMEOUT"),
            "shutdown_timeout": _get("DEWPOINT_SHUTDOWN_TIMEOUT"),
            "config_file": _get("DEWPOINT_CONFIG_FILE"),
            "metrics_port": _get("DEWPOINT_METRICS_PORT"),
        }
        clean_session = _get("MQTT_CLEAN_SESSION")
        if clean_session is not None:
            values["mqtt_clean_session"] = clean_session.casefold() in YES_ANSWER
        if values["metrics_port"] == "0":
            values["metrics_port"] = None
        return cls(**{k: v for k, v in values.items() if v is not None})

    @property
    def is_production(self) -> bool:
        return self.app_env is AppEnv.PRODUCTION


class SensorEntry(BaseModel):
    """One ``sensors:`` entry of the YAML file."""

    altitude: float = DEFAULT_ALTITUDE_METERS
    enabled: bool = True


def parse_sensor_config(config_file: Path) -> tuple[str | None, dict[SensorLocation, SensorEntry]]:
    """Parse the YAML sensor file.

    Expected layout::

        topic_prefix: frankensystem
        sensors:
          mixed_air: {altitude: 243.84}
          supply: {enabled: false}

    Unknown locations and malformed entries are logged and skipped.

    Args:
        config_file: Path to the YAML file

    Returns:
        Tuple of (topic prefix or None, entries keyed by location)

    Raises:
        OSError, yaml.YAMLError: the file cannot be read or parsed

    """
    lp = "config:parse:"
    logger.debug("%s Parsing sensor config file: %s", lp, config_file)
    try:
        with config_file.open() as f:
            data = yaml.safe_load(f)
    except (OSError, yaml.YAMLError):
        logger.exception("%s Failed to read sensor config file: %s", lp, config_file)
        raise

    if not isinstance(data, dict):
        logger.warning("%s Sensor config file is empty or not a mapping, using defaults", lp)
        return None, {}

    prefix = data.get("topic_prefix")
    if prefix is not None and not isinstance(prefix, str):
        logger.warning("%s Ignoring non-string topic_prefix: %r", lp, prefix)
        prefix = None

    entries: dict[SensorLocation, SensorEntry] = {}
    for key, raw in (data.get("sensors") or {}).items():
        try:
            location = SensorLocation(str(key))
        except ValueError:
            logger.warning("%s Unknown sensor location '%s', skipping", lp, key)
            continue
        try:
            entries[location] = SensorEntry.model_validate(raw or {})
        except ValidationError as e:
            logger.warning("%s Invalid entry for sensor '%s': %s", lp, key, e)

    logger.info("%s Parsed sensor config: %d sensor(s)", lp, len(entries))
    return prefix, entries


def build_sensors(settings: ControllerSettings) -> list[Sensor]:
    """Create the tracked sensors: every location, or those enabled in the YAML file."""
    prefix = settings.topic_prefix
    entries: dict[SensorLocation, SensorEntry] = {}
    if settings.config_file is not None:
        if settings.config_file.exists():
            file_prefix, entries = parse_sensor_config(settings.config_file)
            prefix = file_prefix or prefix
        else:
            logger.warning("config: Sensor config file not found: %s, using defaults", settings.config_file)

    if not entries:
        entries = {location: SensorEntry() for location in SensorLocation}

    return [
        Sensor.create(location, altitude=entry.altitude, prefix=prefix)
        for location, entry in entries.items()
        if entry.enabled
    ]


def build_relays(settings: ControllerSettings) -> dict[str, Relay]:
    """Relay command topics under the configured prefix."""
    prefix = settings.topic_prefix.rstrip("/")
    topics = {
        "dehumidification_1": RELAY_DEHUMIDIFICATION_1,
        "dehumidification_2": RELAY_DEHUMIDIFICATION_2,
        "humidification": RELAY_HUMIDIFICATION,
    }
    return {name: Relay(name=name, topic=f"{prefix}/{topic}" if prefix else topic) for name, topic in topics.items()}
