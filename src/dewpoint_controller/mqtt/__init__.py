"""MQTT layer: broker handle, connection manager and topic adapters."""

from dewpoint_controller.mqtt.broker import BrokerHandle, ListenerHandle
from dewpoint_controller.mqtt.connection_manager import ConnectionManager
from dewpoint_controller.mqtt.retry_policy import RetryPolicy
from dewpoint_controller.mqtt.topics import MessageStream, TopicListener, TopicPublisher

__all__ = [
    "BrokerHandle",
    "ConnectionManager",
    "ListenerHandle",
    "MessageStream",
    "RetryPolicy",
    "TopicListener",
    "TopicPublisher",
]
