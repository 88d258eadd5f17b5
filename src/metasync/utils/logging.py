"""Structured logging configuration using structlog.

Every event carries the service name and the operating mode, so logs from
the full, periodic and incremental workers can be told apart once they are
shipped to the same place. Per-message context (subject, object id) is bound
with ``bind_context`` while a broker message is handled.
"""

import logging
import sys
from collections.abc import Iterable
from typing import Any

import structlog
from structlog.contextvars import (
    bind_contextvars,
    clear_contextvars,
    merge_contextvars,
)

# Client libraries that log every request or reconnect at INFO
CHATTY_LOGGERS = ("httpx", "httpcore", "nats", "asyncpg")


def service_fields(mode: str | None) -> structlog.types.Processor:
    """Build a processor that stamps each event with the service and mode."""
    fields = {"service": "metasync"}
    if mode is not None:
        fields["mode"] = mode

    def add_service_fields(
        logger: Any, method_name: str, event_dict: structlog.types.EventDict
    ) -> structlog.types.EventDict:
        for key, value in fields.items():
            event_dict.setdefault(key, value)
        return event_dict

    return add_service_fields


def quiet_loggers(names: Iterable[str], level: int) -> None:
    """Raise the threshold of third-party loggers to ``level``."""
    for name in names:
        logging.getLogger(name).setLevel(level)


def configure_logging(
    level: str = "INFO",
    json_format: bool = True,
    mode: str | None = None,
) -> None:
    """Configure structured logging for one worker process.

    Below DEBUG, the HTTP, broker and database client libraries only log
    warnings.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR).
        json_format: Output logs as JSON (True) or human-readable (False).
        mode: Operating mode added to every event, if known.
    """
    log_level = getattr(logging, level.upper(), logging.INFO)

    # Replace handlers left by an earlier call
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=log_level,
        force=True,
    )
    quiet_loggers(CHATTY_LOGGERS, log_level if log_level <= logging.DEBUG else logging.WARNING)

    processors: list[Any] = [
        merge_contextvars,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        service_fields(mode),
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]
    if json_format:
        processors.append(structlog.processors.JSONRenderer(indent=None, sort_keys=True))
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str | None = None) -> Any:
    """Get a structured logger instance."""
    return structlog.get_logger(name)


def bind_context(**kwargs: Any) -> None:
    """Bind values to every log event in the current context.

    Handler tasks each run in their own copy of the context, so values bound
    while handling one broker message do not leak into another.

    Example:
        >>> bind_context(subject="metadata.update", object_id="f1")
        >>> logger.info("Indexing")
        # Output includes: {"subject": "metadata.update", "object_id": "f1", ...}
    """
    bind_contextvars(**kwargs)


def clear_context() -> None:
    """Clear values bound with ``bind_context``."""
    clear_contextvars()
