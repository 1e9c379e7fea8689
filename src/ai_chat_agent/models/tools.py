"""Data models for tool requests made during reply generation."""

from dataclasses import dataclass
from enum import StrEnum


class ToolKind(StrEnum):
    """Closed set of tools the generator may request."""

    PYTHON = "python"
    WEB_SEARCH = "web_search"
    WEB_FETCH = "web_fetch"
    UNKNOWN = "unknown"

    @classmethod
    def parse(cls, name: str | None) -> "ToolKind":
        """Map a tool name from model output onto a known kind.

        Names are matched case-insensitively and with hyphens treated as
        underscores. Anything else is UNKNOWN.
        """
        if not name:
            return cls.UNKNOWN
        normalized = name.strip().lower().replace("-", "_")
        for kind in cls:
            if kind is not cls.UNKNOWN and kind.value == normalized:
                return kind
        return cls.UNKNOWN


@dataclass(frozen=True)
class ToolRequest:
    """A tool invocation requested by the generator."""

    kind: ToolKind
    name: str  # Name as the model spelled it
    code: str | None = None
    query: str | None = None
    url: str | None = None

    @property
    def argument(self) -> str:
        """The single argument relevant to this tool kind."""
        if self.kind is ToolKind.PYTHON:
            return self.code or ""
        if self.kind is ToolKind.WEB_SEARCH:
            return self.query or ""
        if self.kind is ToolKind.WEB_FETCH:
            return self.url or ""
        return self.code or self.query or self.url or ""


@dataclass(frozen=True)
class ToolResult:
    """Outcome of a tool invocation."""

    success: bool
    output: str = ""
    error: str | None = None

    @classmethod
    def failure(cls, error: str) -> "ToolResult":
        return cls(success=False, error=error)


@dataclass(frozen=True)
class ToolAttempt:
    """One entry in the per-generation tool history."""

    tool: str
    success: bool
    input_preview: str
    output_preview: str
    iteration: int

    def summary_line(self) -> str:
        status = "succeeded" if self.success else "failed"
        return (
            f"Attempt {self.iteration}: {self.tool} {status}\n"
            f"  input: {self.input_preview}\n"
            f"  result: {self.output_preview}"
        )
