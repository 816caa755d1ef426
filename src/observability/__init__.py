"""
Observability Module.

Structured logging for the taxonomy repair tool:
- JSON or console output
- Operation context injection
- Credential censoring
"""

from src.observability.logging import (
    LogContext,
    configure_from_settings,
    configure_logging,
    get_logger,
)

__all__ = [
    "configure_logging",
    "configure_from_settings",
    "get_logger",
    "LogContext",
]
