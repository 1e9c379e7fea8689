"""Reply generation with a bounded tool-iteration loop.

Each generation runs a small state machine::

    Start -> Parse -> NeedsTool* -> Terminal

The model answers in JSON. While it asks for a tool and wants to keep
iterating, the tool is executed and the result, together with a summary
of every attempt so far, is fed back with a request to reflect before the
next step. The loop is capped, so a generation makes at most
``max_tool_iterations + 1`` model calls whatever the model does.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

import structlog
from pydantic import BaseModel, ConfigDict, StrictBool, ValidationError, model_validator

from ..models.tools import ToolAttempt, ToolKind, ToolRequest
from .decision import strip_code_fences
from .prompts import (
    build_conversation_turns,
    build_generation_system_prompt,
    build_reflection_turn,
    truncate,
)

if TYPE_CHECKING:
    from collections.abc import Sequence

    from ..interfaces.llm import TextGenerator, Turn
    from ..models.message import Message
    from .tools import ToolExecutor

log = structlog.get_logger()

# Sent when the agent spoke last and the model needs a user turn to answer
CONTINUE_NUDGE = "(Continue the conversation.)"


class ToolRequestPayload(BaseModel):
    """Tool request as written by the model."""

    model_config = ConfigDict(extra="ignore")

    tool: str | None = None
    code: str | None = None
    query: str | None = None
    url: str | None = None

    def to_request(self) -> ToolRequest:
        return ToolRequest(
            kind=ToolKind.parse(self.tool),
            name=self.tool or "",
            code=self.code,
            query=self.query,
            url=self.url,
        )


class GenerationResponse(BaseModel):
    """Validated shape of one generation turn.

    ``continue_iterating`` defaults to the value of ``needs_tool`` when the
    model leaves it out.
    """

    model_config = ConfigDict(extra="ignore")

    message: str
    needs_tool: StrictBool = False
    continue_iterating: StrictBool | None = None
    tool_request: ToolRequestPayload | None = None
    mood: str | None = None

    @model_validator(mode="after")
    def default_continue(self) -> GenerationResponse:
        if self.continue_iterating is None:
            self.continue_iterating = self.needs_tool
        return self

    @property
    def wants_tool(self) -> bool:
        return bool(self.needs_tool and self.continue_iterating and self.tool_request)


def parse_generation(raw: str) -> GenerationResponse | None:
    """Parse model output, returning None when it is not a valid turn."""
    try:
        data: Any = json.loads(strip_code_fences(raw))
    except json.JSONDecodeError:
        return None
    if not isinstance(data, dict):
        return None
    try:
        return GenerationResponse.model_validate(data)
    except ValidationError:
        return None


@dataclass
class GenerationResult:
    """Final reply and how it was produced."""

    text: str
    oracle_calls: int
    attempts: list[ToolAttempt] = field(default_factory=list)
    mood: str | None = None
    parsed: bool = True
    truncated: bool = False
    system_prompt: str = ""
    turns: list[Turn] = field(default_factory=list)

    @property
    def tool_iterations(self) -> int:
        return len(self.attempts)


class GenerationEngine:
    """Produces reply text from a context window."""

    def __init__(
        self,
        generator: TextGenerator,
        tools: ToolExecutor,
        persona_prompt: str,
        persona_name: str,
        fallback_message: str,
        max_tool_iterations: int = 10,
        reply_character_limit: int = 2000,
        preview_chars: int = 500,
    ) -> None:
        self._generator = generator
        self._tools = tools
        self._persona_name = persona_name
        self._fallback = fallback_message
        self._max_iterations = max_tool_iterations
        self._limit = reply_character_limit
        self._preview_chars = preview_chars
        self._system_prompt = build_generation_system_prompt(persona_prompt, reply_character_limit)

    @property
    def model_name(self) -> str:
        return self._generator.model_name

    async def generate(
        self,
        window: Sequence[Message],
        agent_user_id: str | None = None,
        reply_to: Message | None = None,
    ) -> GenerationResult:
        """Generate the reply for a conversation.

        Args:
            window: Context window, oldest first
            agent_user_id: Platform id of the agent, used to resolve mentions
            reply_to: Message the reply answers, if any

        Returns:
            The final reply text, capped to the reply limit

        Raises:
            OracleError: If the model call itself fails
        """
        turns = build_conversation_turns(window, agent_user_id, self._persona_name, reply_to)
        if not turns or turns[-1]["role"] != "user":
            turns.append({"role": "user", "content": CONTINUE_NUDGE})

        attempts: list[ToolAttempt] = []
        raw = await self._call(turns)
        calls = 1
        response = parse_generation(raw)

        while response is not None and response.wants_tool and len(attempts) < self._max_iterations:
            if response.tool_request is None:
                break
            iteration = len(attempts) + 1
            request = response.tool_request.to_request()
            result = await self._tools.execute(request)

            attempt = ToolAttempt(
                tool=request.kind.value if request.kind is not ToolKind.UNKNOWN else request.name,
                success=result.success,
                input_preview=truncate(request.argument, self._preview_chars),
                output_preview=truncate(
                    result.output if result.success else (result.error or ""),
                    self._preview_chars,
                ),
                iteration=iteration,
            )
            attempts.append(attempt)
            log.info(
                "tool_iteration",
                iteration=iteration,
                tool=attempt.tool,
                success=attempt.success,
            )

            turns.append({"role": "assistant", "content": raw})
            turns.append(
                {
                    "role": "user",
                    "content": build_reflection_turn(
                        attempt,
                        result,
                        attempts,
                        remaining=self._max_iterations - iteration,
                        preview_chars=self._preview_chars,
                    ),
                }
            )

            raw = await self._call(turns)
            calls += 1
            response = parse_generation(raw)

        if response is None:
            log.warning("generation_unparsed_output", chars=len(raw), calls=calls)
            text = raw.strip()
        else:
            if response.wants_tool:
                log.warning("tool_iteration_cap_reached", max_iterations=self._max_iterations)
            text = response.message.strip()

        if not text:
            text = self._fallback

        truncated = len(text) > self._limit
        if truncated:
            log.info("reply_truncated", original_chars=len(text), limit=self._limit)
            text = text[: self._limit]

        return GenerationResult(
            text=text,
            oracle_calls=calls,
            attempts=attempts,
            mood=response.mood if response is not None else None,
            parsed=response is not None,
            truncated=truncated,
            system_prompt=self._system_prompt,
            turns=turns,
        )

    async def _call(self, turns: list[Turn]) -> str:
        return await self._generator.generate(self._system_prompt, list(turns), "json")
