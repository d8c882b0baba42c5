from __future__ import annotations

import argparse
import asyncio
import logging
import signal
import sys
from functools import partial
from pathlib import Path

import dotenv
import uvloop
import yaml
from pydantic import ValidationError

from dewpoint_controller.config import ControllerSettings, build_relays, build_sensors
from dewpoint_controller.const import (
    CONNECTION_MANAGER_TASK_NAME,
    DEWPOINT_DEBUG,
    DEWPOINT_VERSION,
    MAX_CANCELLATION_DURATION,
    SENSORS_SERVICE_TASK_NAME,
)
from dewpoint_controller.correlation import correlation_scope
from dewpoint_controller.exceptions import DewPointControllerError
from dewpoint_controller.logging_abstraction import get_logger, quiet_foreign_loggers, set_global_level
from dewpoint_controller.metrics import start_metrics_server
from dewpoint_controller.models import RelayCommand
from dewpoint_controller.mqtt.broker import BrokerHandle
from dewpoint_controller.mqtt.connection_manager import ConnectionManager
from dewpoint_controller.mqtt.retry_policy import RetryPolicy
from dewpoint_controller.mqtt.topics import TopicListener, TopicPublisher
from dewpoint_controller.relays import RelayClient
from dewpoint_controller.sensors.registry import SensorRegistry
from dewpoint_controller.sensors.service import SensorsService

logger = get_logger(__name__)


class DewPointController:
    """Wires the broker, connection manager and sensors service together.

    Shutdown order: the sensors service stops first so its final flush can still reach
    the broker, then the connection manager disconnects.
    """

    lp: str = "DewPointController:"

    def __init__(self, settings: ControllerSettings, broker: BrokerHandle | None = None) -> None:
        self.settings: ControllerSettings = settings
        self.broker: BrokerHandle = broker or BrokerHandle(settings)
        self.connection: ConnectionManager = ConnectionManager(
            self.broker,
            clean_session=settings.mqtt_clean_session,
            retry_policy=RetryPolicy(),
        )
        self.registry: SensorRegistry = SensorRegistry(build_sensors(settings))
        self.listener: TopicListener = TopicListener(self.broker)
        self.publisher: TopicPublisher = TopicPublisher(self.broker)
        self.relays: RelayClient = RelayClient(self.publisher, build_relays(settings))
        self.service: SensorsService = SensorsService(
            self.registry,
            self.connection,
            self.listener,
            self.publisher,
            flush_timeout=settings.flush_timeout,
        )
        self._service_stop: asyncio.Event = asyncio.Event()
        self._connection_stop: asyncio.Event = asyncio.Event()
        self._service_task: asyncio.Task[None] | None = None
        self._connection_task: asyncio.Task[None] | None = None
        self._stop_task: asyncio.Task[None] | None = None

    async def start(self) -> None:
        """Run until stopped.

        Raises:
            DewPointControllerError: a service failed to start (no sensors configured)

        """
        lp = f"{self.lp}start:"
        logger.info(
            "%s Starting",
            lp,
            extra={"sensors": len(self.registry), "broker": f"{self.settings.mqtt_host}:{self.settings.mqtt_port}"},
        )
        # service first, so its listener is registered before the first CONNECTED
        self._service_task = asyncio.create_task(
            self.service.run(self._service_stop), name=SENSORS_SERVICE_TASK_NAME
        )
        self._connection_task = asyncio.create_task(
            self.connection.run(self._connection_stop), name=CONNECTION_MANAGER_TASK_NAME
        )
        tasks = [self._service_task, self._connection_task]
        done, _ = await asyncio.wait(tasks, return_when=asyncio.FIRST_EXCEPTION)

        failed = [(t, e) for t in done if not t.cancelled() and (e := t.exception()) is not None]
        if failed:
            await self.stop()
            task, error = failed[0]
            logger.error("%s %s failed: %s", lp, task.get_name(), error)
            raise error
        if self._stop_task is not None:
            await self._stop_task
        logger.info("%s Stopped", lp)

    async def send_relay_commands(self, commands: list[tuple[str, RelayCommand]]) -> None:
        """Connect once, publish each relay command, then shut the connection down.

        Raises:
            KeyError: a command names no configured relay (checked before connecting)
            BrokerConnectionError: the broker could not be reached
            PublishError: a command was not acknowledged

        """
        lp = f"{self.lp}relays:"
        targets = [(self.relays.relay(name), command) for name, command in commands]
        try:
            await self.connection.connect()
            for relay, command in targets:
                await self.relays.send(relay, command)
            logger.info("%s ✓ Sent %d relay command(s)", lp, len(targets))
        finally:
            await self.connection.shutdown()

    def request_stop(self, signum: int | None = None) -> None:
        """Signal handler: schedule :meth:`stop` once."""
        if signum is not None:
            logger.info("%s Intercepted signal: %s (%s)", self.lp, signal.Signals(signum).name, signum)
        if self._stop_task is None:
            self._stop_task = asyncio.get_running_loop().create_task(self.stop())

    async def stop(self) -> None:
        """Stop the sensors service, then the connection manager, then cancel stragglers."""
        lp = f"{self.lp}stop:"
        timeout = self.settings.shutdown_timeout
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        logger.info("%s → Shutting down (timeout %.1fs)", lp, timeout)

        self._service_stop.set()
        if self._service_task is not None:
            _, pending = await asyncio.wait({self._service_task}, timeout=timeout)
            if pending:
                logger.warning("%s Sensors service did not stop within %.1fs", lp, timeout)

        self._connection_stop.set()
        remaining = max(deadline - loop.time(), 0.0)
        if self._connection_task is not None:
            _ = await asyncio.wait({self._connection_task}, timeout=remaining)

        stragglers = [t for t in (self._service_task, self._connection_task) if t is not None and not t.done()]
        for task in stragglers:
            logger.warning("%s Cancelling task: %s", lp, task.get_name())
            _ = task.cancel()
        if stragglers:
            _ = await asyncio.wait(stragglers, timeout=MAX_CANCELLATION_DURATION)
        logger.info("%s ✓ Shutdown complete", lp)


def relay_command_arg(text: str) -> tuple[str, RelayCommand]:
    """Parse ``NAME=COMMAND`` for ``--relay``."""
    name, sep, command = text.partition("=")
    if not sep or not name.strip():
        msg = f"expected NAME=COMMAND, got {text!r}"
        raise argparse.ArgumentTypeError(msg)
    try:
        return name.strip(), RelayCommand(command.strip().casefold())
    except ValueError:
        msg = f"unknown relay command {command!r}, expected one of: on, off, toggle"
        raise argparse.ArgumentTypeError(msg) from None


def parse_cli(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Dew point controller")
    _ = parser.add_argument("--env", help="Path to the environment file", default=None, type=Path)
    _ = parser.add_argument("--config", help="Path to the YAML sensor file", default=None, type=Path)
    _ = parser.add_argument("-D", "--debug", action="store_true", help="Enable debug mode")
    _ = parser.add_argument(
        "--relay",
        help="Send a relay command (e.g. humidification=on) and exit; may be repeated",
        action="append",
        default=None,
        type=relay_command_arg,
        metavar="NAME=COMMAND",
    )
    args = parser.parse_args(argv)

    if args.env:
        env_path = args.env.expanduser().resolve()
        if not env_path.exists():
            logger.error("Environment file not found", extra={"path": str(env_path)})
        elif dotenv.load_dotenv(env_path, override=True):
            logger.info("Environment variables loaded", extra={"source": str(env_path)})
        else:
            logger.warning("No environment variables loaded from file", extra={"path": str(env_path)})
    return args


def load_settings(args: argparse.Namespace) -> ControllerSettings:
    """Settings from the environment, with ``--config`` taking precedence."""
    settings = ControllerSettings.from_env()
    if args.config is not None:
        settings = settings.model_copy(update={"config_file": args.config.expanduser().resolve()})
    return settings


async def _run(settings: ControllerSettings) -> None:
    controller = DewPointController(settings)
    loop = asyncio.get_running_loop()
    loop.add_signal_handler(signal.SIGINT, partial(controller.request_stop, signal.SIGINT))
    loop.add_signal_handler(signal.SIGTERM, partial(controller.request_stop, signal.SIGTERM))
    logger.debug("Signal handlers configured for SIGINT & SIGTERM")
    await controller.start()


async def _send_relays(settings: ControllerSettings, commands: list[tuple[str, RelayCommand]]) -> None:
    controller = DewPointController(settings)
    await controller.send_relay_commands(commands)


def main() -> None:
    """Main entry point for the dew point controller."""
    with correlation_scope():
        logger.info("Starting dew point controller", extra={"version": DEWPOINT_VERSION})
        args = parse_cli()

        try:
            settings = load_settings(args)
        except ValidationError as e:
            logger.error("Invalid environment configuration: %s", e)
            sys.exit(1)

        level = logging.INFO if settings.is_production else logging.DEBUG
        if args.debug or DEWPOINT_DEBUG:
            level = logging.DEBUG
        set_global_level(level)
        quiet_foreign_loggers()
        logger.info("Log level: %s", logging.getLevelName(level), extra={"app_env": settings.app_env.value})

        if settings.metrics_port is not None and start_metrics_server(settings.metrics_port):
            logger.info("Metrics server listening", extra={"port": settings.metrics_port})

        try:
            if args.relay:
                uvloop.run(_send_relays(settings, args.relay))
            else:
                uvloop.run(_run(settings))
        except KeyboardInterrupt:
            logger.info("Keyboard interrupt received, shutting down...")
        except KeyError as e:
            logger.error("Unknown relay: %s", e, extra={"relays": ", ".join(build_relays(settings))})
            sys.exit(1)
        except (DewPointControllerError, OSError, yaml.YAMLError) as e:
            logger.exception("Fatal error", extra={"error": str(e)})
            sys.exit(1)
        else:
            logger.info("Dew point controller stopped gracefully")


if __name__ == "__main__":
    main()
