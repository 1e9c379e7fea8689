"""Abstract interfaces for language-model integrations."""

from collections.abc import Sequence
from typing import Literal, Protocol, TypedDict

ResponseFormat = Literal["text", "json"]


class Turn(TypedDict):
    """One conversation turn passed to a text generator."""

    role: Literal["user", "assistant"]
    content: str


class TextGenerator(Protocol):
    """Opaque text generation oracle.

    Used both for the "should I respond" decision and for reply generation.
    The generator knows nothing about tools or decisions; it turns a system
    prompt and a list of turns into raw text.
    """

    @property
    def model_name(self) -> str:
        """Return the model identifier being used."""
        ...

    async def generate(
        self,
        system_prompt: str,
        turns: Sequence[Turn],
        response_format: ResponseFormat = "text",
        *,
        max_tokens: int | None = None,
        temperature: float | None = None,
    ) -> str:
        """
        Generate a completion.

        Args:
            system_prompt: Instructions for the model
            turns: Conversation so far, oldest first
            response_format: "json" when the caller expects a JSON object
            max_tokens: Override the configured output limit
            temperature: Override the configured temperature

        Returns:
            Raw model output

        Raises:
            OracleError: If the call fails
            RateLimitError: If rate limit exceeded
            TimeoutError: If request times out
        """
        ...


class ImageDescriber(Protocol):
    """Describes images attached to chat messages."""

    async def describe_image(self, url: str) -> str | None:
        """
        Describe an image in one or two sentences.

        Args:
            url: Publicly reachable image URL

        Returns:
            Description, or None if the image could not be described
        """
        ...
