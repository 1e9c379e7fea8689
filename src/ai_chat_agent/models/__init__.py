"""Data models and transfer objects."""

from .decision import Decision
from .job import AutonomousJob, DirectJob, DispatchJob, ResponseType
from .message import Enrichment, LinkSummary, Message
from .tools import ToolAttempt, ToolKind, ToolRequest, ToolResult

__all__ = [
    # Message models
    "Message",
    "Enrichment",
    "LinkSummary",
    # Decision models
    "Decision",
    # Dispatch models
    "DirectJob",
    "AutonomousJob",
    "DispatchJob",
    "ResponseType",
    # Tool models
    "ToolKind",
    "ToolRequest",
    "ToolResult",
    "ToolAttempt",
]
