"""Logging configuration."""

import logging
import sys

import structlog

from nedapay.settings import settings

# Event keys that may carry webhook credentials
REDACTED_KEYS = frozenset({"signature", "secret", "api_key", "admin_key"})


def redact_secrets(logger, method_name, event_dict):
    """Mask credential values before they reach a renderer."""
    for key in REDACTED_KEYS & event_dict.keys():
        event_dict[key] = "***"
    return event_dict


def add_app_context(logger, method_name, event_dict):
    """Tag JSON events with the service and environment."""
    event_dict.setdefault("app", settings.app_name)
    event_dict.setdefault("env", settings.env)
    return event_dict


def configure_logging() -> None:
    """Configure structured logging for the API and CLI."""
    shared = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        redact_secrets,
    ]

    if settings.log_format == "json":
        processors = shared + [
            add_app_context,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    else:
        processors = shared + [
            structlog.processors.TimeStamper(fmt="%Y-%m-%d %H:%M:%S"),
            structlog.dev.ConsoleRenderer(),
        ]

    level = logging.getLevelName(settings.log_level.upper())
    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stdout),
        cache_logger_on_first_use=True,
    )

    # Stdlib logging for uvicorn, alembic and SQLAlchemy
    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level)
    # Statement echo stays opt-in even at DEBUG
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)


def get_logger(name: str) -> structlog.BoundLogger:
    """Get a logger instance."""
    return structlog.get_logger(name)
