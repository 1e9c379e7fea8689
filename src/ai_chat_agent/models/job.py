"""Dispatch jobs queued for reply generation."""

from dataclasses import dataclass
from enum import StrEnum

from .message import Message


class ResponseType(StrEnum):
    """How a reply came about."""

    DIRECT = "direct"
    AUTONOMOUS = "autonomous"


@dataclass(frozen=True)
class DirectJob:
    """Reply to a message that addressed the agent."""

    message: Message

    @property
    def channel_id(self) -> str:
        return self.message.channel_id

    @property
    def response_type(self) -> ResponseType:
        return ResponseType.DIRECT


@dataclass(frozen=True)
class AutonomousJob:
    """Reply the agent decided to make on its own."""

    channel_id: str
    decision_id: int | None
    reply_to_message_id: str | None = None

    @property
    def response_type(self) -> ResponseType:
        return ResponseType.AUTONOMOUS


DispatchJob = DirectJob | AutonomousJob
