"""Context window selection over stored channel history.

The same window is used to decide whether to speak and to generate the
reply, so both always agree on what the current conversation is.
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from ..config.schema import ContextConfig
    from ..interfaces.store import MessageStore
    from ..models.message import Message


def build_context_window(
    messages: Iterable[Message],
    *,
    now: datetime,
    max_age: timedelta,
    max_gap: timedelta,
    context_before: int,
) -> list[Message]:
    """Select the slice of history that forms the current conversation.

    1. Messages older than ``max_age`` are dropped.
    2. Walking newest to oldest, the first silence longer than ``max_gap``
       cuts off everything before it.
    3. If the agent spoke in what remains, the window is anchored on its
       latest message: up to ``context_before`` messages before it, the
       message itself and everything after it.

    Args:
        messages: Stored messages in any order
        now: Reference time for the age cut
        max_age: Oldest message age to keep
        max_gap: Longest silence still considered the same conversation
        context_before: Messages kept before the agent's latest message

    Returns:
        Messages ordered oldest first
    """
    newest_first = sorted(messages, key=lambda m: m.created_at, reverse=True)

    cutoff = now - max_age
    recent = [m for m in newest_first if m.created_at >= cutoff]

    conversation: list[Message] = []
    for message in recent:
        if conversation and conversation[-1].created_at - message.created_at > max_gap:
            break
        conversation.append(message)

    conversation.reverse()

    anchor = None
    for index in range(len(conversation) - 1, -1, -1):
        if conversation[index].is_agent:
            anchor = index
            break

    if anchor is None:
        return conversation

    start = max(0, anchor - context_before)
    return conversation[start:]


def dominance_ratio(
    messages: Iterable[Message],
    *,
    now: datetime,
    max_messages: int,
    max_age: timedelta,
) -> float:
    """Fraction of recent messages authored by the agent.

    Only the newest ``max_messages`` that are also younger than ``max_age``
    count. An empty sample yields 0.
    """
    newest_first = sorted(messages, key=lambda m: m.created_at, reverse=True)
    cutoff = now - max_age
    sample = [m for m in newest_first[:max_messages] if m.created_at >= cutoff]
    if not sample:
        return 0.0
    return sum(1 for m in sample if m.is_agent) / len(sample)


class ContextWindower:
    """Builds context windows for a channel straight from the message store."""

    def __init__(
        self,
        store: MessageStore,
        config: ContextConfig,
        fetch_limit: int = 50,
    ) -> None:
        self._store = store
        self._config = config
        self._fetch_limit = fetch_limit

    def recent_history(self, channel_id: str) -> list[Message]:
        """Stored messages of a channel, newest first."""
        return self._store.get_recent_messages(channel_id, self._fetch_limit)

    def window(
        self,
        channel_id: str,
        now: datetime | None = None,
        history: list[Message] | None = None,
    ) -> list[Message]:
        """Build the context window for a channel.

        Args:
            channel_id: Channel to build the window for
            now: Reference time, defaults to the current UTC time
            history: Pre-fetched history to reuse instead of reading the store
        """
        if history is None:
            history = self.recent_history(channel_id)
        return build_context_window(
            history,
            now=now or datetime.now(UTC),
            max_age=timedelta(minutes=self._config.max_age_minutes),
            max_gap=timedelta(minutes=self._config.max_gap_minutes),
            context_before=self._config.context_before,
        )
