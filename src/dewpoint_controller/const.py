import os

from dewpoint_controller import __version__

__all__ = [
    "CONNECTION_MANAGER_TASK_NAME",
    "DEFAULT_ALTITUDE_METERS",
    "DEFAULT_TOPIC_PREFIX",
    "DEWPOINT_CONFIG_FILE",
    "DEWPOINT_CONNECT_TIMEOUT",
    "DEWPOINT_DEBUG",
    "DEWPOINT_FLUSH_TIMEOUT",
    "DEWPOINT_LOG_FORMAT",
    "DEWPOINT_LOG_HUMAN_OUTPUT",
    "DEWPOINT_LOG_JSON_FILE",
    "DEWPOINT_LOG_NAME",
    "DEWPOINT_SHUTDOWN_TIMEOUT",
    "DEWPOINT_VERSION",
    "EVENT_QUEUE_SIZE",
    "MAX_CANCELLATION_DURATION",
    "MESSAGE_QUEUE_SIZE",
    "RELAY_DEHUMIDIFICATION_1",
    "RELAY_DEHUMIDIFICATION_2",
    "RELAY_HUMIDIFICATION",
    "SENSORS_SERVICE_TASK_NAME",
    "YES_ANSWER",
]

YES_ANSWER = ("true", "1", "yes", "y", "t", "on")
DEWPOINT_VERSION: str = __version__
DEWPOINT_LOG_NAME: str = "dewpoint_controller"

DEFAULT_TOPIC_PREFIX: str = "frankensystem"
# 800 ft
DEFAULT_ALTITUDE_METERS: float = 243.84

RELAY_DEHUMIDIFICATION_1: str = "relays/dehumidification_1"
RELAY_DEHUMIDIFICATION_2: str = "relays/dehumidification_2"
RELAY_HUMIDIFICATION: str = "relays/humidification"


def _float_env(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


DEWPOINT_DEBUG: bool = os.environ.get("DEWPOINT_DEBUG", "0").casefold() in YES_ANSWER
DEWPOINT_CONFIG_FILE: str | None = os.environ.get("DEWPOINT_CONFIG_FILE") or None

# Seconds
DEWPOINT_CONNECT_TIMEOUT: float = _float_env("DEWPOINT_CONNECT_TIMEOUT", 10.0)
DEWPOINT_FLUSH_TIMEOUT: float = _float_env("DEWPOINT_FLUSH_TIMEOUT", 3.0)
DEWPOINT_SHUTDOWN_TIMEOUT: float = _float_env("DEWPOINT_SHUTDOWN_TIMEOUT", 10.0)
MAX_CANCELLATION_DURATION: float = 5.0

EVENT_QUEUE_SIZE: int = 32
MESSAGE_QUEUE_SIZE: int = 256

CONNECTION_MANAGER_TASK_NAME = "ConnectionManager_RUN"
SENSORS_SERVICE_TASK_NAME = "SensorsService_RUN"

# Logging Configuration
DEWPOINT_LOG_FORMAT: str = os.environ.get("DEWPOINT_LOG_FORMAT", "human")  # "json", "human", or "both"
DEWPOINT_LOG_JSON_FILE: str | None = os.environ.get("DEWPOINT_LOG_JSON_FILE") or None
DEWPOINT_LOG_HUMAN_OUTPUT: str = os.environ.get("DEWPOINT_LOG_HUMAN_OUTPUT", "stdout")  # "stdout", "stderr", or file path
