"""Abstract interfaces for web services and tools used by the agent."""

from typing import Protocol

from ..models.message import LinkSummary
from ..models.tools import ToolResult


class UrlSummarizer(Protocol):
    """Summarizes pages linked from chat messages."""

    async def summarize_url(self, url: str) -> LinkSummary:
        """
        Summarize the page behind a URL.

        Failures are reported through ``LinkSummary.error`` rather than raised.
        """
        ...


class WebSearcher(Protocol):
    """Answers a search query with references."""

    async def search(self, query: str) -> ToolResult:
        """
        Run a web search.

        Returns:
            ToolResult whose output is a JSON document with the answer and
            references, or a failed result with the reason
        """
        ...


class WebFetcher(Protocol):
    """Retrieves the readable text of a web page."""

    async def fetch(self, url: str) -> ToolResult:
        """
        Fetch a page and extract its text.

        Returns:
            ToolResult whose output is a JSON document with title and content,
            or a failed result with the reason
        """
        ...


class CodeRunner(Protocol):
    """Executes short programs written by the model."""

    async def run(self, code: str) -> ToolResult:
        """
        Execute code and capture its output.

        Returns:
            ToolResult with stdout as output, stderr as error on failure
        """
        ...
