"""Data models for chat messages and their enrichment."""

from dataclasses import dataclass, field, replace
from datetime import datetime


@dataclass(frozen=True)
class LinkSummary:
    """Summary of a URL found in a message, or the reason it is missing."""

    url: str
    summary: str | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        """Whether a summary was produced."""
        return self.summary is not None and self.error is None


@dataclass(frozen=True)
class Enrichment:
    """Derived annotations attached to a message after it was stored."""

    image_descriptions: tuple[str, ...] = ()
    link_summaries: tuple[LinkSummary, ...] = ()

    @property
    def is_empty(self) -> bool:
        """True when there is nothing worth inlining into a prompt."""
        return not self.image_descriptions and not self.link_summaries


@dataclass(frozen=True)
class Message:
    """A chat message as seen by the agent."""

    message_id: str
    channel_id: str
    author_id: str
    author_name: str
    text: str
    created_at: datetime
    is_agent: bool = False
    reply_to_id: str | None = None  # Transport id of the message this replies to
    image_urls: tuple[str, ...] = field(default=())
    enrichment: Enrichment | None = None
    is_backfilled: bool = False

    def with_enrichment(self, enrichment: Enrichment | None) -> "Message":
        """Return a copy of this message carrying the given enrichment."""
        return replace(self, enrichment=enrichment)

    def annotations(self) -> str:
        """Enrichment rendered as inline ``[Image: ...]``/``[Link: ...]`` tags."""
        if self.enrichment is None:
            return ""
        parts = [f"[Image: {d}]" for d in self.enrichment.image_descriptions]
        parts.extend(
            f"[Link: {link.url} - {link.summary}]"
            for link in self.enrichment.link_summaries
            if link.ok
        )
        return " ".join(parts)

    def render(self) -> str:
        """Render the message as a single prompt line, with id and annotations."""
        author = f"{self.author_name} (agent)" if self.is_agent else self.author_name
        line = f"[{self.message_id}] {author}: {self.text}"
        extra = self.annotations()
        return f"{line} {extra}" if extra else line
