"""
Nexus-Core Logging - structured logging for the store and its consumers.

Manifesto:
    Migration failures are diagnostic-log-only: nothing in the engine raises
    into application startup. The log is therefore the one place an operator
    can see that a statement failed or a legacy import was skipped, and it
    has to be structured enough to grep.

    - **Structures:** Dotted event names plus keyword fields
    - **Correlates:** ``phase`` bound via contextvars for every line of a phase
    - **Flexes:** Console output for development, JSON for log shipping

Architecture:
    ::

        configure_logging(level="INFO", json_format=None, service="nexus")
            │
            ▼
        structlog processor chain:
          1. merge_contextvars
          2. add_log_level
          3. TimeStamper(iso)
          4. add_service_metadata
          5. JSONRenderer | ConsoleRenderer

        logger = get_logger(__name__)
        logger.warning("schema.statement_failed", statement="...", error="...")

Examples:
    >>> from nexus.core.logging import configure_logging, get_logger
    >>> configure_logging(level="DEBUG", json_format=False)
    >>> logger = get_logger(__name__)
    >>> logger.info("legacy_import.rows_copied", rows=1)

Tags:
    logging, structlog, observability, nexus-core
"""

from __future__ import annotations

import logging
import sys
from typing import Any

import structlog
from structlog.types import EventDict, Processor, WrappedLogger


# Store service name for metadata
_SERVICE_NAME = "nexus"


def _add_service_metadata(
    logger: WrappedLogger, method_name: str, event_dict: EventDict
) -> EventDict:
    """Add service-level metadata to all logs."""
    event_dict.setdefault("service", _SERVICE_NAME)
    return event_dict


def configure_logging(
    level: str = "INFO",
    json_format: bool | None = None,
    service: str = "nexus",
    add_timestamp: bool = True,
) -> None:
    """Configure structured logging for the application.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR)
        json_format: True for JSON, False for console, None for auto (JSON if not tty)
        service: Service name to include in logs
        add_timestamp: Include ISO timestamp in logs
    """
    global _SERVICE_NAME
    _SERVICE_NAME = service

    if json_format is None:
        json_format = not sys.stderr.isatty()

    shared_processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.dev.set_exc_info,
        structlog.processors.format_exc_info if json_format else _passthrough,
        _add_service_metadata,
    ]

    if add_timestamp:
        shared_processors.insert(0, structlog.processors.TimeStamper(fmt="iso", utc=True))

    if json_format:
        renderer: Processor = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())

    structlog.configure(
        processors=shared_processors + [renderer],
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, level.upper())
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=False,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stderr,
        level=getattr(logging, level.upper()),
    )


def _passthrough(
    logger: WrappedLogger, method_name: str, event_dict: EventDict
) -> EventDict:
    return event_dict


def get_logger(name: str | None = None) -> Any:
    """Get a structured logger.

    Args:
        name: Logger name (usually __name__)

    Returns:
        structlog BoundLogger
    """
    # PrintLogger has no name of its own; carry it as a bound field.
    if name:
        return structlog.get_logger(name, logger_name=name)
    return structlog.get_logger()


def bind_context(**kwargs: Any) -> None:
    """Bind context to include in all subsequent logs on this thread/task.

    Example:
        bind_context(phase="legacy_import")
        logger.info("legacy_import.attached")  # Includes phase
    """
    structlog.contextvars.bind_contextvars(**kwargs)


def unbind_context(*keys: str) -> None:
    """Remove specific keys from logging context."""
    structlog.contextvars.unbind_contextvars(*keys)


def clear_context() -> None:
    """Clear all bound context."""
    structlog.contextvars.clear_contextvars()


class LogContext:
    """Context manager for scoped logging context.

    Example:
        with LogContext(phase="structural"):
            logger.info("migrator.rebuild_started", table="tabs")
        # Context cleared here
    """

    def __init__(self, **kwargs: Any):
        self._context = kwargs

    def __enter__(self) -> "LogContext":
        bind_context(**self._context)
        return self

    def __exit__(self, *args) -> None:
        unbind_context(*self._context.keys())


__all__ = [
    "configure_logging",
    "get_logger",
    "bind_context",
    "unbind_context",
    "clear_context",
    "LogContext",
]
