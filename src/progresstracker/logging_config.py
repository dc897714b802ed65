"""
Structured logging for progresstracker.

All modules log through structlog with snake_case event names. Development
runs render to the console; anything else emits one JSON object per line on
stderr. Image payloads travel as data URLs, so a processor shortens them
before they reach a log line.
"""

import logging
import os
import sys
from typing import Any

import structlog

DATA_URL_PREFIX = "data:"
DATA_URL_LOG_LENGTH = 48


def get_log_level(level_name: str | None = None) -> int:
    """
    Resolve a log level name, falling back to ``LOG_LEVEL`` and then INFO.

    Returns:
        int: Log level constant from logging module
    """
    level_name = (level_name or os.getenv("LOG_LEVEL", "INFO")).upper()
    level = logging.getLevelName(level_name)
    return level if isinstance(level, int) else logging.INFO


def is_development_environment() -> bool:
    return os.getenv("ENVIRONMENT", "development").lower() in ["development", "dev", "local"]


def shorten_data_urls(logger: Any, method_name: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    """structlog processor that replaces long data URLs with their prefix and length."""
    for key, value in event_dict.items():
        if isinstance(value, str) and value.startswith(DATA_URL_PREFIX) and len(value) > DATA_URL_LOG_LENGTH:
            event_dict[key] = f"{value[:DATA_URL_LOG_LENGTH]}...({len(value)} chars)"
    return event_dict


def configure_structured_logging(level_name: str | None = None) -> None:
    """
    Configure structlog and the standard library root logger.

    Args:
        level_name: Overrides ``LOG_LEVEL`` when given
    """
    log_level = get_log_level(level_name)
    is_dev = is_development_environment()

    logging.basicConfig(level=log_level, format="%(message)s", stream=sys.stderr)
    logging.getLogger().setLevel(log_level)

    processors: list[Any] = [
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        shorten_data_urls,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]
    if is_dev:
        processors.append(structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty()))
    else:
        processors.append(structlog.processors.JSONRenderer())

    structlog.configure(
        processors=processors,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    get_logger("progresstracker.logging").debug(
        "logging_configured",
        log_level=logging.getLevelName(log_level),
        environment="development" if is_dev else "production",
    )


def get_logger(name: str | None = None) -> Any:
    """
    Get a structured logger instance.

    Args:
        name: Logger name (optional, defaults to calling module)
    """
    if name is None:
        frame = sys._getframe(1)
        name = frame.f_globals.get("__name__", "progresstracker")

    return structlog.get_logger(name)


def log_performance(operation: str, duration: float, **context: Any) -> None:
    """
    Log how long an image or storage operation took.

    Args:
        operation: Name of the operation
        duration: Duration in seconds
        **context: Additional context information
    """
    get_logger("progresstracker.performance").info(
        "performance_metric", operation=operation, duration_seconds=duration, **context
    )


def log_record_action(action: str, record_id: str | None = None, **context: Any) -> None:
    """
    Log changes made to stored image records.

    Args:
        action: Action performed (saved, deleted, recropped, ...)
        record_id: Identifier of the affected record, if any
        **context: Additional context information
    """
    get_logger("progresstracker.records").info("record_action", action=action, record_id=record_id, **context)


def log_error(error: Exception, context: dict[str, Any] | None = None) -> None:
    """Log an exception together with its classification context."""
    error_context = {
        "error_type": type(error).__name__,
        "error_message": str(error),
        **(context or {}),
    }
    get_logger("progresstracker.errors").error("error_occurred", **error_context, exc_info=error)
