"""Structured JSON logging with principal correlation.

Uses structlog for structured logging with JSON output.
Every log entry carries the id of the principal bound through
:mod:`myexpenses.core.context`, so audit stamps and log lines can be
matched up.
"""

from __future__ import annotations

import logging
import sys
from typing import Any

import structlog

from myexpenses.core.context import get_current_user_id


def _add_principal(
    logger: Any, method_name: str, event_dict: dict[str, Any]
) -> dict[str, Any]:
    """Structlog processor: add the acting principal to every log entry."""
    user_id = get_current_user_id()
    event_dict.setdefault("principal", str(user_id) if user_id else None)
    return event_dict


def build_processors(format: str = "json") -> list[Any]:
    """Return the processor chain used by :func:`setup_logging`."""
    processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.filter_by_level,
        _add_principal,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    if format == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())
    return processors


def setup_logging(
    level: str = "INFO",
    format: str = "json",
) -> None:
    """Configure structured logging for the application.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR).
        format: "json" for production, "console" for development.
    """
    log_level = getattr(logging, level.upper(), logging.INFO)

    structlog.configure(
        processors=build_processors(format),
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stderr,
        level=log_level,
    )


def setup_logging_from_settings(settings: Any) -> None:
    """Configure logging from a :class:`~myexpenses.core.config.Settings`."""
    setup_logging(
        level=settings.observability.log_level,
        format=settings.observability.log_format,
    )


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Get a structured logger for a module."""
    return structlog.get_logger(name)
