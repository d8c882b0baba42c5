"""Logging for the dew point controller.

Wraps stdlib logging with two output formats (human-readable lines and JSON
documents), structured ``extra`` context and the correlation ID of the sensor
message being handled.
"""

from __future__ import annotations

import json
import logging
import sys
from collections.abc import Mapping
from datetime import UTC, datetime
from pathlib import Path
from typing import cast, override

from dewpoint_controller.correlation import get_correlation_id

__all__ = [
    "ControllerLogger",
    "HumanReadableFormatter",
    "JSONFormatter",
    "get_logger",
    "quiet_foreign_loggers",
    "set_global_level",
]


def _context_of(record: logging.LogRecord) -> Mapping[str, object]:
    extra_data = getattr(record, "extra_data", None)
    if isinstance(extra_data, Mapping):
        return cast("Mapping[str, object]", extra_data)
    return {}


class JSONFormatter(logging.Formatter):
    """One JSON object per record."""

    @override
    def format(self, record: logging.LogRecord) -> str:
        doc: dict[str, object] = {
            "timestamp": datetime.fromtimestamp(record.created, UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "location": f"{record.module}:{record.lineno}",
            "message": record.getMessage(),
            "correlation_id": get_correlation_id(),
        }
        context = _context_of(record)
        if context:
            doc["context"] = dict(context)
        if record.exc_info:
            doc["exception"] = self.formatException(record.exc_info)
        return json.dumps(doc, default=str)


class HumanReadableFormatter(logging.Formatter):
    """``timestamp LEVEL [module:line] [corr-id] > message | key=value``"""

    def __init__(self) -> None:
        super().__init__(
            fmt="%(asctime)s.%(msecs)03d %(levelname)s [%(module)s:%(lineno)d] %(correlation_id)s > %(message)s",
            datefmt="%m/%d/%y %H:%M:%S",
        )

    @override
    def format(self, record: logging.LogRecord) -> str:
        correlation_id = get_correlation_id()
        record.correlation_id = f"[{correlation_id}]" if correlation_id else "[------------]"
        line = super().format(record)
        context = _context_of(record)
        if context:
            line = f"{line} | " + " | ".join(f"{k}={v}" for k, v in context.items())
        return line


class ControllerLogger:
    """Thin facade over :class:`logging.Logger` accepting structured ``extra`` context."""

    def __init__(
        self,
        name: str,
        log_format: str = "human",
        json_file: str | Path | None = None,
        human_output: str | None = "stdout",
    ) -> None:
        """Initialize the logger.

        Args:
            name: Logger name (typically module name)
            log_format: Output format - "json", "human", or "both"
            json_file: Path for JSON output (JSON goes to stdout when unset and format is "json")
            human_output: "stdout", "stderr", or a file path for human-readable output

        """
        from dewpoint_controller.const import DEWPOINT_DEBUG

        self.name: str = name
        self.logger: logging.Logger = logging.getLogger(name)
        self.log_format: str = log_format
        if self.logger.level == logging.NOTSET:
            self.logger.setLevel(logging.DEBUG if DEWPOINT_DEBUG else logging.INFO)
        if not self.logger.handlers:
            self._configure_handlers(json_file, human_output)

    def _configure_handlers(self, json_file: str | Path | None, human_output: str | None) -> None:
        level = self.logger.level
        if self.log_format in ("json", "both"):
            json_handler: logging.Handler
            if json_file:
                try:
                    path = Path(json_file)
                    path.parent.mkdir(parents=True, exist_ok=True)
                    json_handler = logging.FileHandler(path, mode="a")
                except OSError as e:
                    print(f"Warning: cannot open JSON log file {json_file}: {e}", file=sys.stderr)
                    json_handler = logging.StreamHandler(sys.stderr)
            else:
                json_handler = logging.StreamHandler(sys.stdout)
            json_handler.setFormatter(JSONFormatter())
            json_handler.setLevel(level)
            self.logger.addHandler(json_handler)

        if self.log_format in ("human", "both"):
            target = human_output or "stdout"
            human_handler: logging.Handler
            if target == "stdout":
                human_handler = logging.StreamHandler(sys.stdout)
            elif target == "stderr":
                human_handler = logging.StreamHandler(sys.stderr)
            else:
                try:
                    path = Path(target)
                    path.parent.mkdir(parents=True, exist_ok=True)
                    human_handler = logging.FileHandler(path, mode="a")
                except OSError as e:
                    print(f"Warning: cannot open log file {target}: {e}", file=sys.stderr)
                    human_handler = logging.StreamHandler(sys.stdout)
            human_handler.setFormatter(HumanReadableFormatter())
            human_handler.setLevel(level)
            self.logger.addHandler(human_handler)

        # Handlers are attached per module logger; avoid duplicates via the root logger.
        self.logger.propagate = False

    def _log(self, level: int, msg: str, *args: object, extra: Mapping[str, object] | None = None) -> None:
        self.logger.log(level, msg, *args, extra={"extra_data": dict(extra)} if extra else None, stacklevel=3)

    def debug(self, msg: str, *args: object, extra: Mapping[str, object] | None = None) -> None:
        self._log(logging.DEBUG, msg, *args, extra=extra)

    def info(self, msg: str, *args: object, extra: Mapping[str, object] | None = None) -> None:
        self._log(logging.INFO, msg, *args, extra=extra)

    def warning(self, msg: str, *args: object, extra: Mapping[str, object] | None = None) -> None:
        self._log(logging.WARNING, msg, *args, extra=extra)

    def error(self, msg: str, *args: object, extra: Mapping[str, object] | None = None) -> None:
        self._log(logging.ERROR, msg, *args, extra=extra)

    def exception(self, msg: str, *args: object, extra: Mapping[str, object] | None = None) -> None:
        """Log at ERROR with the active exception's traceback."""
        self.logger.exception(msg, *args, extra={"extra_data": dict(extra)} if extra else None, stacklevel=2)

    def set_level(self, level: int) -> None:
        """Set the level of the logger and all of its handlers."""
        self.logger.setLevel(level)
        for handler in self.logger.handlers:
            handler.setLevel(level)

    @property
    def handlers(self) -> list[logging.Handler]:
        return self.logger.handlers


_loggers: dict[str, ControllerLogger] = {}


def get_logger(
    name: str,
    log_format: str | None = None,
    json_file: str | Path | None = None,
    human_output: str | None = None,
) -> ControllerLogger:
    """Get or create the :class:`ControllerLogger` for ``name``.

    Args:
        name: Logger name
        log_format: Override default format ("json", "human", or "both")
        json_file: Override default JSON output file
        human_output: Override default human-readable output

    Returns:
        ControllerLogger instance

    """
    if name in _loggers:
        return _loggers[name]

    from dewpoint_controller.const import (
        DEWPOINT_LOG_FORMAT,
        DEWPOINT_LOG_HUMAN_OUTPUT,
        DEWPOINT_LOG_JSON_FILE,
    )

    _loggers[name] = logger = ControllerLogger(
        name=name,
        log_format=log_format or DEWPOINT_LOG_FORMAT,
        json_file=json_file or DEWPOINT_LOG_JSON_FILE,
        human_output=human_output or DEWPOINT_LOG_HUMAN_OUTPUT,
    )
    return logger


def set_global_level(level: int) -> None:
    """Apply ``level`` to every logger created through :func:`get_logger`."""
    for logger in _loggers.values():
        logger.set_level(level)


def quiet_foreign_loggers(level: int = logging.WARNING) -> None:
    """Reduce noise from third-party libraries (aiomqtt logs every packet at DEBUG)."""
    for name in ("aiomqtt", "mqtt", "paho"):
        logging.getLogger(name).setLevel(level)
