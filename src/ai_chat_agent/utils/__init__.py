"""Utility functions and helpers.

This module provides various utilities for the AI Chat Agent:
- security: Secret redaction, outbound URL validation
- safe_subprocess: Isolated execution of Python snippets
- async_helpers: Exceptions, retries, timeouts, background tasks
- logging: Structured logging with secret sanitization
"""

from ai_chat_agent.utils.logging import (
    LogFormat,
    LogLevel,
    bind_context,
    clear_context,
    configure_logging,
    get_logger,
    unbind_context,
)
from ai_chat_agent.utils.security import (
    RedactionError,
    SecretRedactor,
    SecurityError,
    validate_fetch_url,
)

__all__ = [
    # Logging
    "LogFormat",
    "LogLevel",
    "bind_context",
    "clear_context",
    "configure_logging",
    "get_logger",
    "unbind_context",
    # Security
    "RedactionError",
    "SecretRedactor",
    "SecurityError",
    "validate_fetch_url",
]
