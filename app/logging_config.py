"""
Structured logging configuration using structlog.

All logs are output as JSON; background components bind a `component`
field so sweeper, poller and reconciler lines can be told apart.
"""
import structlog
import logging
import sys

from app.config import settings


def configure_logging():
    """Configure structlog for JSON output with context."""
    level = logging.DEBUG if settings.DEBUG else logging.INFO

    # Configure standard library logging (uvicorn, sqlalchemy, httpx)
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=level,
    )

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer()
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )

    return structlog.get_logger()


# Create logger instance
logger = configure_logging()


def get_logger(**context):
    """
    Get a logger with additional context bound.

    Usage:
        log = get_logger(component="sweeper")
        log.info("job_timed_out", job_id=job_id, kind="transformation")
    """
    return logger.bind(**context)
