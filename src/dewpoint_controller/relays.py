"""Relay command client for the humidification and dehumidification relays."""

from __future__ import annotations

from collections.abc import Mapping

from dewpoint_controller.logging_abstraction import get_logger
from dewpoint_controller.models import QoS, Relay, RelayCommand
from dewpoint_controller.mqtt.topics import Publisher

__all__ = ["RelayClient"]

logger = get_logger(__name__)


class RelayClient:
    """Sends ``on``/``off``/``toggle`` commands to relay topics.

    Commands are published at least once and never retained, so a relay does not
    replay a stale command when it reconnects.
    """

    lp: str = "relays:"

    def __init__(self, publisher: Publisher, relays: Mapping[str, Relay] | None = None) -> None:
        self.publisher: Publisher = publisher
        self.relays: dict[str, Relay] = dict(relays or {})

    def relay(self, name: str) -> Relay:
        """Look up a configured relay; raises KeyError for an unknown name."""
        return self.relays[name]

    async def send(self, relay: Relay | str, command: RelayCommand) -> None:
        """Publish ``command`` to the relay's topic.

        Raises:
            KeyError: ``relay`` names no configured relay
            PublishError: the broker is not connected or the publish failed

        """
        target = self.relay(relay) if isinstance(relay, str) else relay
        await self.publisher.publish(target.topic, command.value, QoS.AT_LEAST_ONCE, retain=False)
        logger.info("%s %s -> %s", self.lp, command.value, target.name, extra={"topic": target.topic})

    async def turn_on(self, relay: Relay | str) -> None:
        await self.send(relay, RelayCommand.ON)

    async def turn_off(self, relay: Relay | str) -> None:
        await self.send(relay, RelayCommand.OFF)

    async def toggle(self, relay: Relay | str) -> None:
        await self.send(relay, RelayCommand.TOGGLE)
