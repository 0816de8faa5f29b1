"""Structured key=value logging via structlog."""
from __future__ import annotations

import logging
import sys
from typing import Any

import structlog

# Loggers that are too chatty at INFO for a delivery service
_QUIET_LOGGERS = ("aiohttp.client", "asyncio")


def _escape(value: str) -> str:
    """Escape control characters so an entry stays on one line."""
    return (
        value.replace("\\", "\\\\")
        .replace("\n", "\\n")
        .replace("\r", "\\r")
        .replace("\t", "\\t")
    )


def escape_newlines_processor(logger, method_name, event_dict: dict[str, Any]) -> dict[str, Any]:
    """Escape newlines in string values, one level into lists and dicts.

    Must run after ``format_exc_info`` so rendered tracebacks are covered too.
    """
    for key, value in event_dict.items():
        if isinstance(value, str):
            event_dict[key] = _escape(value)
        elif isinstance(value, (list, tuple)):
            event_dict[key] = [_escape(item) if isinstance(item, str) else item for item in value]
        elif isinstance(value, dict):
            event_dict[key] = {
                k: _escape(v) if isinstance(v, str) else v for k, v in value.items()
            }
    return event_dict


class SingleLineFormatter(logging.Formatter):
    """stdlib formatter that never emits a raw newline."""

    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)
        return message.replace("\n", "\\n").replace("\r", "\\r")


def configure_logging(level: str = "INFO", *, service: str | None = None) -> None:
    """Route stdlib and structlog output through one key=value stream on stdout.

    ``service`` is bound as a global context variable so every line carries it.
    """
    numeric_level = logging.getLevelName(level.upper())
    if not isinstance(numeric_level, int):
        numeric_level = logging.INFO

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(SingleLineFormatter("%(message)s"))

    root_logger = logging.getLogger()
    root_logger.handlers = [handler]
    root_logger.setLevel(numeric_level)

    access_logger = logging.getLogger("aiohttp.access")
    access_logger.setLevel(numeric_level)
    access_logger.handlers = []
    access_logger.propagate = True

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(numeric_level, logging.WARNING))

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            escape_newlines_processor,
            structlog.processors.KeyValueRenderer(
                key_order=["timestamp", "level", "logger", "event", "message"],
                drop_missing=True,
            ),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    if service:
        structlog.contextvars.bind_contextvars(service=service)
