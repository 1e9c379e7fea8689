"""Security utilities for secret redaction and outbound URL validation.

Redaction is fail-closed: if a pattern fails to compile or execute, an
exception is raised instead of returning text that may still hold a secret.
"""

from __future__ import annotations

import ipaddress
import re
from typing import TYPE_CHECKING
from urllib.parse import urlparse

import structlog

if TYPE_CHECKING:
    from collections.abc import Sequence

log = structlog.get_logger()


class SecurityError(Exception):
    """Base exception for security-related errors."""


class RedactionError(SecurityError):
    """Raised when secret redaction fails."""


# Hostnames that always resolve to the local machine
LOCAL_HOSTNAMES = frozenset({"localhost", "localhost.localdomain", "ip6-localhost"})

ALLOWED_URL_SCHEMES = frozenset({"http", "https"})


class SecretRedactor:
    """Detects and redacts secrets from text.

    Used for log output and for tool output before it is fed back into a
    prompt or posted to a channel.

    Usage:
        redactor = SecretRedactor()
        safe_text = redactor.redact(potentially_sensitive_text)
    """

    DEFAULT_PATTERNS: tuple[tuple[str, str], ...] = (
        (
            r"(?i)(api[_-]?key|secret|token|password|credential)\s*[=:]\s*[\"']?[\w-]{16,}",
            "Generic secret",
        ),
        # Slack
        (r"xox[baprs]-[\w-]+", "Slack token"),
        (r"xapp-[\w-]+", "Slack app token"),
        # GitHub
        (r"ghp_[a-zA-Z0-9]{36}", "GitHub PAT"),
        (r"github_pat_[a-zA-Z0-9_]{22,}", "GitHub fine-grained PAT"),
        # OpenAI
        (r"sk-proj-[a-zA-Z0-9]{20,}", "OpenAI project API key"),
        (r"sk-[a-zA-Z0-9]{48}", "OpenAI legacy API key"),
        # Anthropic
        (r"sk-ant-[\w-]{40,}", "Anthropic API key"),
        # AWS
        (r"AKIA[0-9A-Z]{16}", "AWS access key ID"),
        # Google
        (r"AIza[0-9A-Za-z\-_]{35}", "Google API key"),
        # Authorization headers (Kagi uses "Bot <key>")
        (r"(?i)authorization:\s*(bot|bearer)\s+[\w.-]{16,}", "Authorization header"),
        # Database connection strings
        (
            r"(?i)(postgres(?:ql)?|mysql|mongodb(?:\+srv)?|redis|amqp)://[^:]+:[^@]+@[^\s]+",
            "Database connection string",
        ),
        # Private keys
        (
            r"-----BEGIN (?:RSA |EC |DSA |OPENSSH )?PRIVATE KEY-----",
            "Private key header",
        ),
        # JWT tokens
        (
            r"eyJ[a-zA-Z0-9_-]*\.eyJ[a-zA-Z0-9_-]*\.[a-zA-Z0-9_-]*",
            "JWT token",
        ),
    )

    def __init__(
        self,
        placeholder: str = "[REDACTED]",
        custom_patterns: Sequence[tuple[str, str]] | None = None,
    ) -> None:
        """Initialize the SecretRedactor.

        Args:
            placeholder: String to replace detected secrets with.
            custom_patterns: Additional (pattern, name) tuples to detect.

        Raises:
            RedactionError: If any pattern fails to compile.
        """
        self.placeholder = placeholder
        self._pattern_names: dict[re.Pattern[str], str] = {}

        all_patterns = list(self.DEFAULT_PATTERNS)
        if custom_patterns:
            all_patterns.extend(custom_patterns)

        try:
            for pattern_str, name in all_patterns:
                self._pattern_names[re.compile(pattern_str)] = name
        except re.error as e:
            log.error("pattern_compilation_failed", pattern=pattern_str, error=str(e))
            raise RedactionError(f"Failed to compile secret pattern '{pattern_str}': {e}") from e

    @property
    def patterns(self) -> list[re.Pattern[str]]:
        """Return the list of compiled patterns."""
        return list(self._pattern_names.keys())

    def redact(self, text: str) -> str:
        """Redact all secrets from the given text.

        Args:
            text: The text to scan and redact secrets from.

        Returns:
            The text with all detected secrets replaced with placeholder.

        Raises:
            RedactionError: If redaction fails for any reason.
        """
        if not text:
            return text

        try:
            result = text
            for pattern in self._pattern_names:
                result = pattern.sub(self.placeholder, result)
            return result
        except Exception as e:
            log.error("redaction_failed", error=str(e))
            raise RedactionError(f"Redaction failed: {e}") from e

    def has_secrets(self, text: str) -> bool:
        """Check if text contains any secrets.

        Raises:
            RedactionError: If checking fails for any reason.
        """
        if not text:
            return False

        try:
            return any(pattern.search(text) for pattern in self._pattern_names)
        except Exception as e:
            log.error("has_secrets_check_failed", error=str(e))
            raise RedactionError(f"Secret check failed: {e}") from e


def validate_fetch_url(url: str) -> bool:
    """Check that a URL is safe for the agent to fetch (SSRF prevention).

    Only http(s) URLs are allowed, and hosts that point at the local machine
    or at private, link-local or reserved address ranges are rejected.

    Args:
        url: The URL requested by the model or found in a message.

    Returns:
        True if the URL may be fetched, False otherwise.
    """
    if not url:
        return False

    try:
        parsed = urlparse(url)
    except ValueError:
        return False

    if parsed.scheme.lower() not in ALLOWED_URL_SCHEMES:
        return False

    host = parsed.hostname
    if not host:
        return False

    if host.lower() in LOCAL_HOSTNAMES or host.lower().endswith(".localhost"):
        return False

    try:
        ip = ipaddress.ip_address(host)
    except ValueError:
        return True  # A hostname, not an address literal

    return not (
        ip.is_loopback
        or ip.is_private
        or ip.is_link_local
        or ip.is_reserved
        or ip.is_multicast
        or ip.is_unspecified
    )
