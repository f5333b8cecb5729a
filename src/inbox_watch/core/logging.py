"""Logging configuration helpers and the protocol log channel."""

from __future__ import annotations

import json
import logging
import logging.config
from collections.abc import Callable
from typing import Any

from .config import LoggingSettings

LOGGER = logging.getLogger(__name__)

PROTOCOL_LOGGER_NAME = "inbox_watch.protocol"

# Protocol (syslog style) severities mapped onto stdlib levels.
PROTOCOL_LEVELS: dict[str, int] = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "notice": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
    "critical": logging.CRITICAL,
    "alert": logging.CRITICAL,
    "emergency": logging.CRITICAL,
}

ProtocolSink = Callable[[str, str, str], None]


class JsonFormatter(logging.Formatter):
    """Render each record as one JSON object per line."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "time": self.formatTime(record),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False)


def _structured_formatter() -> dict[str, Any]:
    """Return a dictConfig fragment for structured JSON logs."""
    return {"()": JsonFormatter}


def _plain_formatter() -> dict[str, Any]:
    """Return a dictConfig fragment for human readable logs."""
    return {
        "format": "%(asctime)s %(levelname)s %(name)s %(message)s",
    }


def configure_logging(settings: LoggingSettings) -> None:
    """Configure application logging according to provided settings."""
    formatter = _structured_formatter() if settings.structured else _plain_formatter()

    dict_config = {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "default": formatter,
        },
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "formatter": "default",
                "level": settings.level,
            },
        },
        "root": {
            "handlers": ["console"],
            "level": settings.level,
        },
    }

    logging.config.dictConfig(dict_config)


class ProtocolLogger:
    """Log channel that is always on, mirrored to the stdlib logging tree.

    Messages are recorded under ``inbox_watch.protocol.<source>`` and, when a
    sink is attached, forwarded to the surrounding protocol layer. A failing
    sink never affects the caller.
    """

    def __init__(self, sink: ProtocolSink | None = None) -> None:
        """Create the channel with an optional forwarding sink."""
        self._sink = sink

    def attach(self, sink: ProtocolSink | None) -> None:
        """Replace the forwarding sink."""
        self._sink = sink

    def log(self, level: str, source: str, message: str) -> None:
        """Record ``message`` at protocol severity ``level``."""
        stdlib_level = PROTOCOL_LEVELS.get(level, logging.INFO)
        logging.getLogger(f"{PROTOCOL_LOGGER_NAME}.{source}").log(
            stdlib_level, message
        )
        if self._sink is None:
            return
        try:
            self._sink(level, source, message)
        except Exception:  # pylint: disable=broad-except
            LOGGER.debug("Protocol log sink raised; message kept locally only")


__all__ = [
    "PROTOCOL_LEVELS",
    "JsonFormatter",
    "PROTOCOL_LOGGER_NAME",
    "ProtocolLogger",
    "ProtocolSink",
    "configure_logging",
]
