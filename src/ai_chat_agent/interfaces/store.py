"""Abstract interface for the message store."""

from collections.abc import Sequence
from typing import Any, Protocol

from ..models.decision import Decision
from ..models.job import ResponseType
from ..models.message import Enrichment, Message


class MessageStore(Protocol):
    """Persistent, upsertable log of channel messages and agent activity.

    All writes are keyed and idempotent: the same message id may be written
    by normal tracking, by backfill, and again when enrichment arrives.
    """

    def upsert_message(self, message: Message) -> None:
        """
        Insert a message or update the stored copy.

        Enrichment already stored is kept when ``message.enrichment`` is None.
        """
        ...

    def update_enrichment(self, message_id: str, enrichment: Enrichment) -> bool:
        """
        Attach enrichment to an existing message.

        Returns:
            False if the message row does not exist
        """
        ...

    def get_message(self, message_id: str) -> Message | None:
        """Return a stored message by id."""
        ...

    def message_exists(self, message_id: str) -> bool:
        """Return True if the message id is stored."""
        ...

    def get_recent_messages(self, channel_id: str, limit: int) -> list[Message]:
        """Return up to ``limit`` messages of a channel, newest first."""
        ...

    def log_decision(self, decision: Decision) -> int:
        """Persist a decision and return its id."""
        ...

    def get_decision(self, decision_id: int) -> Decision | None:
        """Return a stored decision by id."""
        ...

    def mark_decision_sent(self, decision_id: int) -> None:
        """Flag that a reply stemming from this decision was sent."""
        ...

    def log_response(
        self,
        *,
        channel_id: str,
        message_id: str,
        response_type: ResponseType,
        content: str,
        trigger_message_id: str | None = None,
        decision_id: int | None = None,
        tool_iterations: int = 0,
    ) -> int:
        """Persist a sent reply and return its id."""
        ...

    def store_prompt(
        self,
        *,
        prompt_type: str,
        system_prompt: str,
        turns: Sequence[dict[str, Any]],
        model: str,
        temperature: float | None = None,
        decision_id: int | None = None,
        response_id: int | None = None,
    ) -> int:
        """Persist the prompt behind a decision or reply for later audit."""
        ...

    def list_channels(self) -> list[str]:
        """Return the ids of every channel with stored messages."""
        ...

    def prune_messages(self, channel_id: str, keep: int) -> int:
        """
        Delete all but the newest ``keep`` messages of a channel.

        Returns:
            Number of deleted rows
        """
        ...

    def get_stats(self) -> dict[str, int]:
        """Return row counts for messages, decisions and responses."""
        ...
