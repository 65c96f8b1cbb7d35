"""Structured logging with per-run trace ids.

Every sync run, monitor poll and API request gets a trace id so that the
log lines of one run can be followed across concurrent source fetches.
"""

import logging
import sys
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Any

import structlog
from structlog.typing import FilteringBoundLogger, Processor

_trace_id_var: ContextVar[str | None] = ContextVar("trace_id", default=None)

# Libraries that log every request at INFO
_NOISY_LOGGERS = ("httpx", "httpcore", "asyncio")


def set_trace_id(trace_id: str | None = None, prefix: str | None = None) -> str:
    """Set trace ID for the current context.

    Args:
        trace_id: Explicit trace ID. Generated when omitted.
        prefix: Optional run kind prepended to a generated id (``sync-1a2b3c4d``)

    Returns:
        The trace ID that was set
    """
    if trace_id is None:
        short = uuid.uuid4().hex[:12]
        trace_id = f"{prefix}-{short}" if prefix else short
    _trace_id_var.set(trace_id)
    return trace_id


def get_trace_id() -> str | None:
    """Get the current trace ID from context."""
    return _trace_id_var.get()


@contextmanager
def trace_context(prefix: str, **fields: Any) -> Iterator[str]:
    """Run a block under a fresh trace id with extra bound fields.

    Example:
        >>> with trace_context("sync", clean=True) as trace_id:
        ...     logger.info("sync_started")
    """
    token = _trace_id_var.set(None)
    trace_id = set_trace_id(prefix=prefix)
    with structlog.contextvars.bound_contextvars(**fields):
        try:
            yield trace_id
        finally:
            _trace_id_var.reset(token)


def add_trace_id(
    logger: logging.Logger, method_name: str, event_dict: dict[str, Any]
) -> dict[str, Any]:
    """Processor to add trace ID to log records."""
    trace_id = get_trace_id()
    if trace_id is not None:
        event_dict["trace_id"] = trace_id
    return event_dict


def get_logger(name: str) -> FilteringBoundLogger:
    """Get a structured logger instance.

    Args:
        name: Logger name (typically __name__)
    """
    return structlog.get_logger(name)


def configure_logging(log_level: str = "INFO", log_format: str = "json") -> None:
    """Configure application-wide logging.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_format: Output format ('json' or 'console')

    Raises:
        ValueError: If log_level is not a valid logging level
    """
    level = logging.getLevelName(log_level.upper())
    if not isinstance(level, int):
        raise ValueError(f"Invalid log_level '{log_level}'")

    logging.basicConfig(format="%(message)s", stream=sys.stderr, level=level)
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))

    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        add_trace_id,
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.dev.set_exc_info,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
    ]
    if log_format == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
