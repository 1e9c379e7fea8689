"""Structured logging setup for the chat agent.

Log output is produced by structlog on top of the standard library handlers.
Every entry passes through the secret redactor before rendering, so tokens
pasted into chat or echoed back by tools never reach the log sink.
"""

from __future__ import annotations

import logging
import sys
from collections.abc import MutableMapping
from enum import StrEnum
from pathlib import Path
from typing import Any, cast

import structlog
from structlog.typing import WrappedLogger

from ai_chat_agent.utils.security import SecretRedactor


class LogFormat(StrEnum):
    """Log output format options."""

    JSON = "json"
    CONSOLE = "console"


class LogLevel(StrEnum):
    """Log level options."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


SERVICE_NAME = "ai-chat-agent"

_redactor: SecretRedactor | None = None


def _get_redactor() -> SecretRedactor:
    global _redactor
    if _redactor is None:
        _redactor = SecretRedactor(placeholder="[REDACTED]")
    return _redactor


def sanitize_log_value(value: Any) -> Any:
    """Recursively redact secrets from a log value.

    Args:
        value: Value to sanitize (can be nested dict/list/str)

    Returns:
        Value of the same shape with secrets replaced
    """
    redactor = _get_redactor()

    if isinstance(value, str):
        return redactor.redact(value)
    elif isinstance(value, dict):
        return {k: sanitize_log_value(v) for k, v in value.items()}
    elif isinstance(value, (list, tuple)):
        return type(value)(sanitize_log_value(v) for v in value)
    else:
        return value


def secret_sanitizer(
    logger: logging.Logger,
    method_name: str,
    event_dict: MutableMapping[str, Any],
) -> MutableMapping[str, Any]:
    """Structlog processor that redacts secrets from every entry."""
    return cast(MutableMapping[str, Any], sanitize_log_value(event_dict))


def add_service_processor(
    logger: logging.Logger,
    method_name: str,
    event_dict: MutableMapping[str, Any],
) -> MutableMapping[str, Any]:
    """Tag every entry with the service name and version."""
    event_dict["service"] = SERVICE_NAME

    try:
        from ai_chat_agent._version import __version__

        event_dict["version"] = __version__
    except (ImportError, RuntimeError):
        pass

    return event_dict


def configure_logging(
    level: LogLevel | str = LogLevel.INFO,
    log_format: LogFormat | str = LogFormat.JSON,
    file_path: Path | str | None = None,
    file_enabled: bool = False,
) -> None:
    """Configure structlog and the standard logging handlers.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_format: Output format (json or console)
        file_path: Path to log file (if file logging enabled)
        file_enabled: Whether to enable file logging

    Example:
        configure_logging(level="DEBUG", log_format="console")
    """
    if isinstance(level, str):
        level = LogLevel(level.upper())
    if isinstance(log_format, str):
        log_format = LogFormat(log_format.lower())

    numeric_level = getattr(logging, level.value)

    processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        add_service_processor,
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        secret_sanitizer,
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]

    if log_format == LogFormat.JSON:
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(
            structlog.dev.ConsoleRenderer(
                colors=True, exception_formatter=structlog.dev.plain_traceback
            )
        )

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    handlers: list[logging.Handler] = []

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(numeric_level)
    handlers.append(console_handler)

    if file_enabled and file_path:
        try:
            file_path = Path(file_path)
            file_path.parent.mkdir(parents=True, exist_ok=True)

            file_handler = logging.FileHandler(file_path)
            file_handler.setLevel(numeric_level)
            handlers.append(file_handler)
        except OSError as e:
            # Continue with console output only
            logging.getLogger("ai_chat_agent.logging").warning(
                f"Could not create log file {file_path}: {e}"
            )

    logging.basicConfig(
        format="%(message)s",
        level=numeric_level,
        handlers=handlers,
        force=True,
    )


def get_logger(name: str | None = None) -> WrappedLogger:
    """Get a structured logger instance."""
    return cast(WrappedLogger, structlog.get_logger(name))


def bind_context(**kwargs: Any) -> None:
    """Bind contextual variables for all subsequent log calls in this task.

    Example:
        bind_context(channel_id="C123")
        log.info("evaluation_started")  # Includes channel_id
    """
    structlog.contextvars.bind_contextvars(**kwargs)


def unbind_context(*keys: str) -> None:
    """Remove contextual variables."""
    structlog.contextvars.unbind_contextvars(*keys)


def clear_context() -> None:
    """Clear all bound contextual variables."""
    structlog.contextvars.clear_contextvars()
