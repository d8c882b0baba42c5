"""Exception hierarchy for the dew point controller.

Every runtime error raised by the broker handle, the topic adapters and the sensor
registry derives from :class:`DewPointControllerError`, so callers can recover from
the whole family with one ``except`` clause and still tell the cases apart.
"""

from __future__ import annotations


class DewPointControllerError(Exception):
    """Base class for controller errors."""


class BrokerConnectionError(DewPointControllerError):
    """Connecting to the MQTT broker failed, or the operation needs a live connection.

    Named BrokerConnectionError to avoid shadowing Python's built-in ConnectionError.

    Attributes:
        reason: Specific failure reason
        state: Connection state when the error occurred

    """

    def __init__(self, reason: str, state: str = "unknown") -> None:
        """Initialize connection error with reason and state."""
        self.reason: str = reason
        self.state: str = state
        super().__init__(f"Connection error: {reason} (state: {state})")


class DecodingError(DewPointControllerError):
    """A sensor payload could not be parsed into a reading.

    The message is dropped and the sensor keeps its last good value.

    Attributes:
        topic: Topic the payload arrived on
        payload: The raw payload
        reason: Why decoding failed

    """

    def __init__(self, topic: str, payload: bytes, reason: str) -> None:
        """Initialize decoding error."""
        self.topic: str = topic
        self.payload: bytes = payload
        self.reason: str = reason
        super().__init__(f"Failed to decode payload {payload!r} on '{topic}': {reason}")


class SensorNotFoundError(DewPointControllerError):
    """No tracked sensor owns a topic or location.

    Indicates subscriptions and the registry disagree, which is a configuration or
    programming error rather than a runtime condition.
    """

    def __init__(self, key: str) -> None:
        """Initialize with the topic or location that failed to resolve."""
        self.key: str = key
        super().__init__(f"No sensor found for: {key}")


class PublishError(DewPointControllerError):
    """Publishing to the broker failed; the value stays pending."""

    def __init__(self, topic: str, reason: str) -> None:
        """Initialize publish error."""
        self.topic: str = topic
        self.reason: str = reason
        super().__init__(f"Publish to '{topic}' failed: {reason}")


class SubscribeError(DewPointControllerError):
    """Subscribing or unsubscribing failed."""

    def __init__(self, topics: list[str], reason: str) -> None:
        """Initialize subscribe error."""
        self.topics: list[str] = list(topics)
        self.reason: str = reason
        super().__init__(f"(Un)subscribe for {len(self.topics)} topic(s) failed: {reason}")


class SensorCountError(DewPointControllerError):
    """The sensors service was started without any sensors to track."""

    def __init__(self) -> None:
        """Initialize sensor count error."""
        super().__init__("At least one sensor is required")
