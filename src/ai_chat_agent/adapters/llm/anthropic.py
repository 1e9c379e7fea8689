"""Anthropic Claude adapter for text generation and image description.

Security features:
- Secret redaction BEFORE all API calls (fail-closed)
- Output length limits enforced
"""

from __future__ import annotations

import base64
from collections.abc import Sequence
from typing import Any

import anthropic
import httpx
import structlog

from ...config.schema import AnthropicConfig
from ...interfaces.llm import ResponseFormat, Turn
from ...utils.async_helpers import OracleError, RateLimitError, TimeoutError
from ...utils.security import RedactionError, SecretRedactor, SecurityError

log = structlog.get_logger()

# Maximum response length in characters
MAX_RESPONSE_LENGTH = 50000

# Images larger than this are not sent for description
MAX_IMAGE_BYTES = 20 * 1024 * 1024

SUPPORTED_IMAGE_TYPES = frozenset({"image/png", "image/jpeg", "image/gif", "image/webp"})

# Prepended when a conversation would otherwise start with an assistant turn
CONVERSATION_START = "(conversation start)"

VISION_PROMPT = (
    "Describe this image in one or two sentences, as if telling someone in a chat "
    "what was posted. Mention any readable text."
)


def normalize_turns(turns: Sequence[Turn]) -> list[dict[str, str]]:
    """Shape turns the way the Messages API requires.

    Consecutive turns of the same role are merged and the conversation
    always starts with a user turn.
    """
    merged: list[dict[str, str]] = []
    for turn in turns:
        if merged and merged[-1]["role"] == turn["role"]:
            merged[-1]["content"] += "\n" + turn["content"]
        else:
            merged.append({"role": turn["role"], "content": turn["content"]})

    if not merged or merged[0]["role"] != "user":
        merged.insert(0, {"role": "user", "content": CONVERSATION_START})
    return merged


class AnthropicAdapter:
    """Anthropic adapter implementing TextGenerator and ImageDescriber.

    Example:
        config = AnthropicConfig(api_key="sk-ant-...")
        adapter = AnthropicAdapter(config)

        text = await adapter.generate("Be terse.", [{"role": "user", "content": "hi"}])
    """

    def __init__(
        self,
        config: AnthropicConfig,
        redactor: SecretRedactor | None = None,
        image_headers: dict[str, str] | None = None,
    ) -> None:
        """Initialize the Anthropic adapter.

        Args:
            config: Anthropic-specific configuration.
            redactor: Secret redactor. If None, creates default.
            image_headers: Headers used when downloading images to describe.
        """
        self._config = config
        self._redactor = redactor or SecretRedactor()
        self._image_headers = image_headers or {}
        self._client = anthropic.AsyncAnthropic(api_key=config.api_key, timeout=config.timeout)

    @property
    def model_name(self) -> str:
        """Return the model identifier being used."""
        return self._config.model

    def _redact_text(self, text: str) -> str:
        """Redact secrets from text, failing closed on error.

        Raises:
            SecurityError: If redaction fails.
        """
        try:
            return self._redactor.redact(text)
        except RedactionError as e:
            log.error("redaction_failed_blocking_llm_call", error=str(e))
            raise SecurityError(f"Cannot send to LLM: redaction failed: {e}") from e

    async def generate(
        self,
        system_prompt: str,
        turns: Sequence[Turn],
        response_format: ResponseFormat = "text",
        *,
        max_tokens: int | None = None,
        temperature: float | None = None,
    ) -> str:
        """Generate a completion for a conversation.

        For JSON responses the assistant turn is prefilled with ``{`` so the
        model starts its answer inside the object.

        Raises:
            OracleError: If the call fails or the response is too long.
            SecurityError: If redaction fails.
            RateLimitError: If rate limit exceeded.
            TimeoutError: If request times out.
        """
        messages: list[dict[str, Any]] = [
            {"role": m["role"], "content": self._redact_text(m["content"])}
            for m in normalize_turns(turns)
        ]

        prefill = ""
        if response_format == "json" and messages[-1]["role"] == "user":
            prefill = "{"
            messages.append({"role": "assistant", "content": prefill})

        try:
            response = await self._client.messages.create(
                model=self._config.model,
                max_tokens=max_tokens or self._config.max_tokens,
                temperature=self._config.temperature if temperature is None else temperature,
                system=self._redact_text(system_prompt),
                messages=messages,  # type: ignore[arg-type]
            )
        except anthropic.RateLimitError as e:
            log.warning("anthropic_rate_limit", error=str(e))
            raise RateLimitError(f"Anthropic rate limit exceeded: {e}") from e
        except anthropic.APITimeoutError as e:
            log.error("anthropic_timeout", error=str(e))
            raise TimeoutError(f"Anthropic request timed out: {e}") from e
        except anthropic.APIError as e:
            log.error("anthropic_api_error", error=str(e))
            raise OracleError(f"Anthropic API error: {e}") from e

        response_text = ""
        for block in response.content:
            if hasattr(block, "text"):
                response_text += block.text

        if len(response_text) > MAX_RESPONSE_LENGTH:
            raise OracleError(f"Response exceeds maximum length: {len(response_text)}")

        log.debug(
            "anthropic_generation_complete",
            model=self._config.model,
            response_format=response_format,
            chars=len(response_text),
            stop_reason=getattr(response, "stop_reason", None),
        )
        return prefill + response_text

    async def _download_image(self, url: str) -> tuple[bytes, str] | None:
        async with httpx.AsyncClient(timeout=30.0, follow_redirects=True) as client:
            response = await client.get(url, headers=self._image_headers)
            response.raise_for_status()

        media_type = response.headers.get("content-type", "").split(";")[0].strip().lower()
        if media_type not in SUPPORTED_IMAGE_TYPES:
            log.debug("image_type_unsupported", url=url, media_type=media_type)
            return None
        if len(response.content) > MAX_IMAGE_BYTES:
            log.debug("image_too_large", url=url, size=len(response.content))
            return None
        return response.content, media_type

    async def describe_image(self, url: str) -> str | None:
        """Describe an image in one or two sentences.

        Returns:
            Description, or None if the image could not be fetched or described.
        """
        try:
            image = await self._download_image(url)
        except httpx.HTTPError as e:
            log.warning("image_download_failed", url=url, error=str(e))
            return None
        if image is None:
            return None

        data, media_type = image
        try:
            response = await self._client.messages.create(
                model=self._config.model,
                max_tokens=self._config.vision_max_tokens,
                messages=[
                    {
                        "role": "user",
                        "content": [
                            {
                                "type": "image",
                                "source": {
                                    "type": "base64",
                                    "media_type": media_type,
                                    "data": base64.b64encode(data).decode("ascii"),
                                },
                            },
                            {"type": "text", "text": VISION_PROMPT},
                        ],
                    }
                ],
            )
        except anthropic.APIError as e:
            log.warning("image_description_failed", url=url, error=str(e))
            return None

        description = "".join(
            block.text for block in response.content if hasattr(block, "text")
        ).strip()
        return description or None
