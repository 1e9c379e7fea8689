"""Detection of messages that address the agent."""

from __future__ import annotations

import re
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Sequence

    from ..models.message import Message


def build_name_pattern(names: Sequence[str]) -> re.Pattern[str] | None:
    """Compile a case-insensitive, word-bounded pattern for the agent's names."""
    cleaned = [re.escape(name.strip()) for name in names if name and name.strip()]
    if not cleaned:
        return None
    # Longest first so "Isaac Bot" wins over "Isaac"
    cleaned.sort(key=len, reverse=True)
    return re.compile(rf"(?<!\w)(?:{'|'.join(cleaned)})(?!\w)", re.IGNORECASE)


def addresses_by_name(text: str, pattern: re.Pattern[str] | None) -> bool:
    """True when the text names the agent without mentioning it."""
    return bool(pattern and pattern.search(text))


def mentions_agent(text: str, agent_user_id: str | None) -> bool:
    """True when the text contains a platform mention of the agent."""
    return bool(agent_user_id) and f"<@{agent_user_id}>" in text


def is_direct_trigger(
    message: Message,
    agent_user_id: str | None,
    replied_to: Message | None = None,
) -> bool:
    """Whether a message explicitly addresses the agent.

    A message is a direct trigger if it mentions the agent or replies to a
    message the agent wrote.

    Args:
        message: Inbound message
        agent_user_id: The agent's platform user id
        replied_to: The stored message that ``message`` replies to, if any
    """
    if message.is_agent:
        return False
    if mentions_agent(message.text, agent_user_id):
        return True
    return replied_to is not None and replied_to.is_agent
