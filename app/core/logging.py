"""
Logging configuration for the application.
Uses structlog for structured logging (JSON in production, colorful in dev).
"""

import logging
import re
import sys
from typing import Any

import structlog
from asgi_correlation_id import correlation_id

from app.config import get_settings

# Keys that must never reach a log sink.
REDACTED_KEYS = frozenset({
    "password",
    "new_password",
    "current_password",
    "confirm_password",
    "password_hash",
    "refresh_token",
    "refresh_token_hash",
    "password_reset_hash",
    "otp",
    "otp_hash",
    "token",
    "access_token",
})


def redact_credentials(logger, method_name, event_dict):
    for key in list(event_dict):
        if key in REDACTED_KEYS:
            event_dict.pop(key)
    return event_dict


RESET_TOKEN_PATH = re.compile(r"(/api/users/reset-password/)[^/?\s]+")


class ResetTokenFilter(logging.Filter):
    """Masks reset tokens in uvicorn access log lines."""

    def filter(self, record: logging.LogRecord) -> bool:
        if isinstance(record.args, tuple):
            record.args = tuple(
                RESET_TOKEN_PATH.sub(r"\1{token}", arg) if isinstance(arg, str) else arg
                for arg in record.args
            )
        return True


def add_correlation_id(logger, method_name, event_dict):
    request_id = correlation_id.get()
    if request_id:
        event_dict["request_id"] = request_id
    return event_dict


def configure_logging() -> None:
    """Configure structured logging."""
    settings = get_settings()

    shared_processors: list[Any] = [
        add_correlation_id,
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
        redact_credentials,
    ]

    if settings.is_production:
        # JSON logs for production
        renderer = structlog.processors.JSONRenderer()
        processors = shared_processors + [
            structlog.processors.format_exc_info,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ]
    else:
        renderer = structlog.dev.ConsoleRenderer()
        processors = shared_processors + [
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ]

    structlog.configure(
        processors=processors,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    # Route standard library logging (uvicorn, sqlalchemy) through structlog
    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=shared_processors,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(settings.LOG_LEVEL.upper())

    access_logger = logging.getLogger("uvicorn.access")
    if not any(isinstance(f, ResetTokenFilter) for f in access_logger.filters):
        access_logger.addFilter(ResetTokenFilter())
