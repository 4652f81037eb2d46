"""
core/logging.py
---------------
Structured logging using structlog.

Every event carries the service name and environment so logs from several
deployments can share one aggregator.
DEBUG=true  → human-readable console output at debug level
DEBUG=false → JSON at LOG_LEVEL
"""

import logging
import sys

import structlog

from dealerdesk.core.config import settings

# Chatty libraries only surface warnings outside debug mode
QUIET_LOGGERS = ("uvicorn.access", "sqlalchemy.engine", "asyncpg", "aiosqlite")


def _service_context(logger, method_name, event_dict):
    event_dict.setdefault("service", settings.APP_NAME)
    event_dict.setdefault("env", settings.APP_ENV)
    return event_dict


def _resolve_level() -> int:
    if settings.DEBUG:
        return logging.DEBUG
    level = logging.getLevelName(settings.LOG_LEVEL.strip().upper())
    return level if isinstance(level, int) else logging.INFO


def configure_logging() -> None:
    log_level = _resolve_level()

    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=log_level)
    if not settings.DEBUG:
        for name in QUIET_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)

    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        _service_context,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.dev.ConsoleRenderer() if settings.DEBUG else structlog.processors.JSONRenderer(),
    ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str = __name__):
    return structlog.get_logger(name)
