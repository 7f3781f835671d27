"""Structured logging configuration."""

import logging
import sys

import structlog

from app.config import settings


def configure_logging(level: str | None = None, log_format: str | None = None) -> None:
    """
    Configure structlog and the standard library root logger.

    Args:
        level: Overrides LOG_LEVEL (used by scripts run with --verbose)
        log_format: Overrides LOG_FORMAT ("json" or "console")
    """
    level = (level or settings.log_level).upper()
    log_format = log_format or settings.log_format

    shared_processors = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]

    if log_format == "json":
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer()

    structlog.configure(
        processors=[*shared_processors, renderer],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, level),
    )

    # SQL echo is controlled by DEBUG on the engine
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)


def bind_log_context(**context: object) -> None:
    """Attach identifiers (actor, appointment) to every log line of the current task."""
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(
        **{key: str(value) for key, value in context.items() if value is not None}
    )
