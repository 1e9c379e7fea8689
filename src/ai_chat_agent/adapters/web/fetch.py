"""Web page fetching tool."""

from __future__ import annotations

import html
import json
import re

import httpx
import lxml.html
import structlog
from lxml import etree
from readability import Document
from readability.readability import Unparseable

from ...models.tools import ToolResult
from ...utils.security import validate_fetch_url

log = structlog.get_logger()

USER_AGENT = "Mozilla/5.0 (compatible; ai-chat-agent/1.0)"
MAX_REDIRECTS = 5
EXCERPT_CHARS = 300
TRUNCATION_MARKER = "\n\n[Content truncated...]"

# Attribute values may contain ">", so quoted strings are matched whole
_ATTRS = r"""(?:[^>"']|"[^"]*"|'[^']*')*"""

_TITLE_RE = re.compile(r"<title[^>]*>([\s\S]*?)</title>", re.I)
_BODY_RE = re.compile(rf"<body\b{_ATTRS}>([\s\S]*?)</body>", re.I)
_COMMENT_RE = re.compile(r"<!--[\s\S]*?-->")
_NOISE_RE = re.compile(
    r"<(script|style|nav|header|footer|aside|noscript|form)\b[\s\S]*?</\1\s*>", re.I
)
_BLOCK_RE = re.compile(rf"</?(?:p|div|br|li|h[1-6]|tr|section|article)\b{_ATTRS}>", re.I)
_TAG_RE = re.compile(rf"</?[a-zA-Z][\w:-]*{_ATTRS}>")

_BLOCK_TAGS = ("p", "div", "br", "li", "h1", "h2", "h3", "h4", "h5", "h6", "tr", "pre")


def _strip_tags(text: str) -> str:
    """Remove HTML tags and decode entities."""
    text = _COMMENT_RE.sub("", text)
    text = _NOISE_RE.sub("", text)
    text = _BLOCK_RE.sub("\n", text)
    text = _TAG_RE.sub("", text)
    return html.unescape(text).strip()


def _normalize(text: str) -> str:
    text = re.sub(r"[ \t\xa0]+", " ", text)
    text = re.sub(r" *\n *", "\n", text)
    return re.sub(r"\n{3,}", "\n\n", text).strip()


def extract_title(page: str) -> str:
    match = _TITLE_RE.search(page)
    if not match:
        return "No title"
    return _normalize(html.unescape(match.group(1))) or "No title"


def extract_text(page: str) -> str:
    """Plain-text fallback: the whole body with tags and page chrome removed."""
    body = _BODY_RE.search(page)
    return _normalize(_strip_tags(body.group(1) if body else page))


def extract_article(page: str) -> str | None:
    """Extract the main article text with readability.

    Returns:
        The article text, or None when no readable content was found
    """
    try:
        summary = Document(page).summary(html_partial=True)
        tree = lxml.html.fromstring(summary)
    except (Unparseable, etree.LxmlError, ValueError) as e:
        log.debug("readability_extraction_failed", error=str(e))
        return None

    for element in tree.iter(*_BLOCK_TAGS):
        element.tail = "\n" + (element.tail or "")
    return _normalize(tree.text_content()) or None


class PageFetcher:
    """WebFetcher that downloads HTML and extracts its readable text."""

    def __init__(
        self,
        timeout: float = 10.0,
        max_chars: int = 50000,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._timeout = timeout
        self._max_chars = max_chars
        self._transport = transport

    async def fetch(self, url: str) -> ToolResult:
        if not validate_fetch_url(url):
            return ToolResult.failure(f"URL not allowed: {url}")

        log.info("fetching_page", url=url)
        try:
            async with httpx.AsyncClient(
                timeout=self._timeout,
                follow_redirects=True,
                max_redirects=MAX_REDIRECTS,
                transport=self._transport,
            ) as client:
                response = await client.get(
                    url,
                    headers={
                        "User-Agent": USER_AGENT,
                        "Accept": "text/html,application/xhtml+xml",
                    },
                )
                response.raise_for_status()
        except httpx.TimeoutException:
            return ToolResult.failure(f"Request timed out after {self._timeout}s")
        except httpx.HTTPStatusError as e:
            return ToolResult.failure(f"HTTP {e.response.status_code} fetching {url}")
        except httpx.HTTPError as e:
            log.warning("page_fetch_failed", url=url, error=str(e))
            return ToolResult.failure(f"Failed to fetch {url}: {e}")

        content_type = response.headers.get("content-type", "")
        if "text/html" not in content_type and "application/xhtml" not in content_type:
            return ToolResult.failure(
                f"Unsupported content type: {content_type or 'unknown'} "
                "(only HTML pages are supported)"
            )

        page = response.text
        content = extract_article(page)
        method = "readability"
        if content is None:
            content = extract_text(page)
            method = "fallback"
        if not content:
            return ToolResult.failure("No readable content found on page")

        if len(content) > self._max_chars:
            content = content[: self._max_chars] + TRUNCATION_MARKER

        log.info("page_fetched", url=url, extraction_method=method, chars=len(content))

        excerpt = content[:EXCERPT_CHARS]
        if len(content) > EXCERPT_CHARS:
            excerpt += "..."

        return ToolResult(
            success=True,
            output=json.dumps(
                {
                    "url": str(response.url),
                    "title": extract_title(page),
                    "content": content,
                    "excerpt": excerpt,
                    "extraction_method": method,
                },
                indent=2,
            ),
        )
