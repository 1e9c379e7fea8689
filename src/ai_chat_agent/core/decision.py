"""Decision oracle adapter: asks the model whether the agent should speak."""

from __future__ import annotations

import json
from dataclasses import replace
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

import structlog
from pydantic import BaseModel, ConfigDict, StrictBool, ValidationError, field_validator

from ..models.decision import Decision
from ..utils.async_helpers import OracleError, StorageError
from .prompts import build_decision_request

if TYPE_CHECKING:
    from collections.abc import Sequence

    from ..interfaces.llm import TextGenerator
    from ..interfaces.store import MessageStore
    from ..models.message import Message

log = structlog.get_logger()


class DecisionResponse(BaseModel):
    """Validated shape of the decision oracle's answer."""

    model_config = ConfigDict(extra="ignore")

    should_respond: StrictBool
    reply_to_message_id: str | None = None
    reason: str = ""

    @field_validator("reply_to_message_id", mode="before")
    @classmethod
    def normalize_target(cls, v: Any) -> str | None:
        if v is None or v == "" or isinstance(v, bool):
            return None
        return str(v)

    @field_validator("reason", mode="before")
    @classmethod
    def normalize_reason(cls, v: Any) -> str:
        return "" if v is None else str(v)


def strip_code_fences(text: str) -> str:
    """Remove a surrounding Markdown code fence, if any."""
    text = text.strip()
    if text.startswith("```"):
        lines = text.split("\n")
        if lines[0].startswith("```"):
            lines = lines[1:]
        if lines and lines[-1].strip() == "```":
            lines = lines[:-1]
        text = "\n".join(lines)
    return text.strip()


def parse_decision(raw: str) -> DecisionResponse:
    """Parse and validate raw oracle output.

    Raises:
        OracleError: If the output is not JSON or the verdict is not a boolean
    """
    try:
        data = json.loads(strip_code_fences(raw))
    except json.JSONDecodeError as e:
        raise OracleError(f"Decision is not valid JSON: {e}") from e

    if not isinstance(data, dict):
        raise OracleError("Decision is not a JSON object")

    try:
        return DecisionResponse.model_validate(data)
    except ValidationError as e:
        raise OracleError(f"Invalid decision structure: {e.error_count()} error(s)") from e


class DecisionOracle:
    """Wraps the "should I respond" model call with a strict output contract.

    Every evaluation that reaches the model, successful or not, is stored as
    a Decision together with its prompt so it can be audited later.
    """

    def __init__(
        self,
        generator: TextGenerator,
        store: MessageStore,
        persona_name: str,
        soft_ratio_ceiling: float = 0.15,
        max_tokens: int = 300,
        temperature: float = 0.7,
    ) -> None:
        self._generator = generator
        self._store = store
        self._persona_name = persona_name
        self._soft_ratio_ceiling = soft_ratio_ceiling
        self._max_tokens = max_tokens
        self._temperature = temperature

    async def evaluate(
        self,
        channel_id: str,
        window: Sequence[Message],
        ratio: float,
    ) -> Decision:
        """Ask the oracle whether to respond to the conversation in ``window``.

        Args:
            channel_id: Channel being evaluated
            window: Context window, oldest first
            ratio: Current dominance ratio, passed to the oracle as context

        Returns:
            The stored decision. Failures yield a negative decision whose
            reason carries the error.
        """
        now = datetime.now(UTC)
        message_ids = tuple(m.message_id for m in window)

        if not window:
            log.debug("decision_skipped_empty_window", channel_id=channel_id)
            return Decision(
                channel_id=channel_id,
                evaluated_at=now,
                messages_evaluated=0,
                should_respond=False,
                reason="No messages to evaluate",
                evaluated_message_ids=(),
            )

        system_prompt, user_prompt = build_decision_request(
            self._persona_name, window, ratio, self._soft_ratio_ceiling
        )

        try:
            raw = await self._generator.generate(
                system_prompt,
                [{"role": "user", "content": user_prompt}],
                "json",
                max_tokens=self._max_tokens,
                temperature=self._temperature,
            )
            response = parse_decision(raw)
            decision = Decision(
                channel_id=channel_id,
                evaluated_at=now,
                messages_evaluated=len(window),
                should_respond=response.should_respond,
                reason=response.reason,
                evaluated_message_ids=message_ids,
                reply_to_message_id=response.reply_to_message_id,
            )
        except Exception as e:
            log.warning(
                "decision_failed",
                channel_id=channel_id,
                error=str(e),
                error_type=type(e).__name__,
            )
            decision = Decision(
                channel_id=channel_id,
                evaluated_at=now,
                messages_evaluated=len(window),
                should_respond=False,
                reason=f"Error: {e}",
                evaluated_message_ids=message_ids,
            )

        decision = self._record(decision, system_prompt, user_prompt)

        log.info(
            "decision_made",
            channel_id=channel_id,
            should_respond=decision.should_respond,
            reply_to=decision.reply_to_message_id,
            reason=decision.reason,
            messages=decision.messages_evaluated,
            ratio=round(ratio, 3),
            decision_id=decision.decision_id,
        )
        return decision

    def _record(self, decision: Decision, system_prompt: str, user_prompt: str) -> Decision:
        """Persist the decision and its prompt; storage failures are logged only."""
        try:
            decision_id = self._store.log_decision(decision)
        except StorageError as e:
            log.error("decision_log_failed", channel_id=decision.channel_id, error=str(e))
            return decision

        try:
            self._store.store_prompt(
                prompt_type="evaluation",
                system_prompt=system_prompt,
                turns=[{"role": "user", "content": user_prompt}],
                model=self._generator.model_name,
                temperature=self._temperature,
                decision_id=decision_id,
            )
        except StorageError as e:
            log.warning("decision_prompt_store_failed", decision_id=decision_id, error=str(e))

        return replace(decision, decision_id=decision_id)
