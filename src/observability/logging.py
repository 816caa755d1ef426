"""
Structured Logging Configuration.

structlog setup for the audit and repair core: JSON lines in production,
coloured console output in development. Every event carries the service
name, any command context bound with LogContext, and has database
credentials masked.
"""

import logging
import re
import sys
from typing import Any, Literal

import structlog
from structlog.types import EventDict, Processor, WrappedLogger

from src.config.settings import Settings, get_settings

# user:password@ segment of a database URL
_URL_CREDENTIALS = re.compile(r"(?P<scheme>[A-Za-z0-9+_.-]+://)[^/@\s]+@")

SENSITIVE_KEYS = {"password", "secret", "token", "credential", "private_key"}

REDACTED = "***REDACTED***"

# Libraries that log every statement at INFO
_QUIET_LOGGERS = ("sqlalchemy.engine", "sqlalchemy.pool", "aiosqlite", "asyncio")


class LogContext:
    """
    Bind key/value pairs to every event logged inside the block.

    Usage:
        with LogContext(command="fix_count", tt_id=10):
            logger.info("Repairing count")
    """

    def __init__(self, **kwargs: Any):
        self._bound = structlog.contextvars.bound_contextvars(**kwargs)

    def __enter__(self):
        self._bound.__enter__()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self._bound.__exit__(exc_type, exc_val, exc_tb)
        return False


def service_name_processor(service_name: str) -> Processor:
    """Stamp the service name on every event."""

    def add_service(
        logger: WrappedLogger,
        method_name: str,
        event_dict: EventDict,
    ) -> EventDict:
        event_dict.setdefault("service", service_name)
        return event_dict

    return add_service


def _mask(key: str, value: Any) -> Any:
    if isinstance(value, dict):
        return {k: _mask(k, v) for k, v in value.items()}
    if not isinstance(value, str):
        return value
    if any(s in key.lower() for s in SENSITIVE_KEYS):
        return REDACTED
    return _URL_CREDENTIALS.sub(rf"\g<scheme>{REDACTED}@", value)


def censor_sensitive_data(
    logger: WrappedLogger,
    method_name: str,
    event_dict: EventDict,
) -> EventDict:
    """Mask secrets by key name and user:password pairs inside URLs."""
    for key in list(event_dict):
        event_dict[key] = _mask(key, event_dict[key])
    return event_dict


def configure_logging(
    level: str = "INFO",
    format: Literal["json", "console"] = "json",
    service_name: str = "taxonomy-repair",
) -> None:
    """
    Configure structlog and the standard library root logger.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR)
        format: "json" for production, "console" for development
        service_name: Value of the "service" key on every event
    """
    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        service_name_processor(service_name),
        censor_sensitive_data,
        structlog.processors.StackInfoRenderer(),
    ]

    if format == "json":
        processors += [
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=True))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, level.upper()),
    )

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def configure_from_settings(settings: Settings | None = None) -> None:
    """Configure logging from the log level and format in application settings."""
    settings = settings or get_settings()
    configure_logging(
        level=settings.log_level,
        format=settings.observability.log_format,
    )


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """Get a structlog logger, usually named after the calling module."""
    return structlog.get_logger(name)
