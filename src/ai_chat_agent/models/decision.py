"""Data models for autonomous response decisions."""

from dataclasses import dataclass
from datetime import datetime


@dataclass(frozen=True)
class Decision:
    """Outcome of one "should the agent speak" evaluation.

    Immutable apart from ``response_sent``, which is only flipped in the store
    once a job stemming from this decision actually produced output.
    """

    channel_id: str
    evaluated_at: datetime
    messages_evaluated: int
    should_respond: bool
    reason: str
    evaluated_message_ids: tuple[str, ...]
    reply_to_message_id: str | None = None
    decision_id: int | None = None  # Assigned by the store
    response_sent: bool = False
