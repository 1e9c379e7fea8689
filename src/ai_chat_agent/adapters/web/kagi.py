"""Kagi API client for web search and URL summaries.

Search goes through FastGPT, which answers a question with references.
Link summaries use the Universal Summarizer.
"""

from __future__ import annotations

import json
from typing import Any

import httpx
import structlog

from ...models.message import LinkSummary
from ...models.tools import ToolResult
from ...utils.async_helpers import api_retry
from ...utils.security import validate_fetch_url

log = structlog.get_logger()

KAGI_API_URL = "https://kagi.com/api/v0"


def _describe_status(response: httpx.Response) -> str:
    if response.status_code == 401:
        return "Invalid Kagi API key"
    if response.status_code == 402:
        return "Insufficient Kagi API credits"
    return f"Kagi API error: {response.status_code} {response.reason_phrase}"


class KagiClient:
    """WebSearcher and UrlSummarizer backed by the Kagi API.

    Example:
        kagi = KagiClient(api_key="...")
        result = await kagi.search("latest python release")
        summary = await kagi.summarize_url("https://example.com/post")
    """

    def __init__(
        self,
        api_key: str,
        timeout: float = 30.0,
        summary_type: str = "takeaway",
        summary_engine: str = "cecil",
        base_url: str = KAGI_API_URL,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            api_key: Kagi API key.
            timeout: Request timeout in seconds.
            summary_type: Universal Summarizer output style ("summary" or "takeaway").
            summary_engine: Universal Summarizer engine.
            base_url: API root, overridable for testing.
            transport: Optional httpx transport, used by tests.
        """
        self._api_key = api_key
        self._timeout = timeout
        self._summary_type = summary_type
        self._summary_engine = summary_engine
        self._base_url = base_url.rstrip("/")
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self._base_url,
            timeout=self._timeout,
            transport=self._transport,
            headers={"Authorization": f"Bot {self._api_key}", "Accept": "application/json"},
        )

    @api_retry
    async def _post(self, path: str, payload: dict[str, Any]) -> httpx.Response:
        async with self._client() as client:
            return await client.post(path, json=payload)

    @api_retry
    async def _get(self, path: str, params: dict[str, str]) -> httpx.Response:
        async with self._client() as client:
            return await client.get(path, params=params)

    async def search(self, query: str) -> ToolResult:
        """Answer a query with FastGPT.

        Returns:
            ToolResult whose output is JSON with query, answer, references
            and tokens_used.
        """
        if not query.strip():
            return ToolResult.failure("Search query is required and must be a non-empty string")

        log.info("kagi_search", query=query)
        try:
            response = await self._post(
                "/fastgpt", {"query": query, "web_search": True, "cache": True}
            )
        except httpx.HTTPError as e:
            log.warning("kagi_search_failed", query=query, error=str(e))
            return ToolResult.failure(f"Search failed: {e}")

        if response.status_code != 200:
            log.warning("kagi_search_failed", query=query, status=response.status_code)
            return ToolResult.failure(f"Search failed: {_describe_status(response)}")

        data = response.json().get("data") or {}
        if not data.get("output"):
            return ToolResult.failure("No answer returned from Kagi FastGPT")

        references = [
            {
                "title": ref.get("title") or "No title",
                "url": ref.get("url") or "",
                "snippet": ref.get("snippet") or "",
            }
            for ref in data.get("references") or []
        ]
        log.info("kagi_search_answered", query=query, references=len(references))

        return ToolResult(
            success=True,
            output=json.dumps(
                {
                    "query": query,
                    "answer": data["output"],
                    "references": references,
                    "tokens_used": data.get("tokens", 0),
                },
                indent=2,
            ),
        )

    async def summarize_url(self, url: str) -> LinkSummary:
        """Summarize a page with the Universal Summarizer."""
        if not validate_fetch_url(url):
            return LinkSummary(url=url, error="URL not allowed")

        try:
            response = await self._get(
                "/summarize",
                {
                    "url": url,
                    "summary_type": self._summary_type,
                    "engine": self._summary_engine,
                },
            )
        except httpx.TimeoutException:
            log.warning("url_summary_failed", url=url, error="timeout")
            return LinkSummary(url=url, error="Request timed out")
        except httpx.HTTPError as e:
            log.warning("url_summary_failed", url=url, error=str(e))
            return LinkSummary(url=url, error=str(e))

        if response.status_code != 200:
            error = _describe_status(response)
            log.warning("url_summary_failed", url=url, error=error)
            return LinkSummary(url=url, error=error)

        body = response.json()
        if body.get("error"):
            log.warning("url_summary_failed", url=url, error=str(body["error"]))
            return LinkSummary(url=url, error=str(body["error"]))

        output = (body.get("data") or {}).get("output")
        if not output:
            return LinkSummary(url=url, error="No summary returned")

        log.debug("url_summarized", url=url, chars=len(output))
        return LinkSummary(url=url, summary=output.strip())
