"""Structured logging for the Skill Graph Engine.

Request-scoped fields (correlation ID, tenant, run ID) are bound in
structlog's context variables and merged into every event.
"""

import logging
import sys
from contextlib import AbstractContextManager
from typing import Any

import structlog
from structlog.contextvars import bound_contextvars, merge_contextvars
from structlog.types import FilteringBoundLogger

_configured = False


def setup_logging(json_format: bool = True, log_level: str = "INFO") -> None:
    """Configure structlog and the stdlib root logger.

    Args:
        json_format: Render events as JSON lines instead of console output
        log_level: Minimum log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """
    global _configured

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level.upper()),
        force=True,
    )

    processors: list[Any] = [
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        merge_contextvars,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]
    if json_format:
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )
    _configured = True


def get_logger(name: str) -> FilteringBoundLogger:
    """Get a structured logger, configuring defaults on first use."""
    if not _configured:
        setup_logging()
    return structlog.get_logger(name)


def request_context_scope(**context: Any) -> AbstractContextManager:
    """Bind fields to every event logged inside the scope.

    Scopes nest; the enclosing values are restored on exit. Fields passed
    explicitly to a log call take precedence over bound ones.

    Example:
        >>> with request_context_scope(tenant_id="acme", run_id="r-1"):
        ...     logger.info("detection_started")
    """
    return bound_contextvars(**context)
