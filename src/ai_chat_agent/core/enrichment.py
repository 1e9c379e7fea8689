"""Image descriptions and link summaries attached to stored messages."""

from __future__ import annotations

import re
from typing import TYPE_CHECKING
from urllib.parse import urlparse

import structlog
from cachetools import LRUCache, TTLCache

from ..models.message import Enrichment, LinkSummary
from ..utils.async_helpers import StorageError

if TYPE_CHECKING:
    from ..config.schema import EnrichmentConfig
    from ..interfaces.llm import ImageDescriber
    from ..interfaces.services import UrlSummarizer
    from ..interfaces.store import MessageStore
    from ..models.message import Message

log = structlog.get_logger()

URL_PATTERN = re.compile(r"https?://[^\s<>|\"']+", re.IGNORECASE)

IMAGE_EXTENSIONS = (".png", ".jpg", ".jpeg", ".gif", ".webp", ".bmp", ".svg")

_TRAILING_PUNCTUATION = ".,;:!?)]}>"


def extract_urls(
    text: str,
    skip_domains: list[str] | tuple[str, ...] = (),
    limit: int | None = None,
) -> list[str]:
    """Find summarizable URLs in message text.

    URLs are deduplicated in order of appearance. Direct image links and
    URLs on a skipped domain (or its subdomains) are left out.
    """
    skip = tuple(domain.lower() for domain in skip_domains)
    found: list[str] = []
    for match in URL_PATTERN.finditer(text or ""):
        url = match.group(0).rstrip(_TRAILING_PUNCTUATION)
        if url in found:
            continue
        parsed = urlparse(url)
        host = (parsed.hostname or "").lower()
        if not host:
            continue
        if any(host == d or host.endswith("." + d) for d in skip):
            continue
        if parsed.path.lower().endswith(IMAGE_EXTENSIONS):
            continue
        found.append(url)
        if limit is not None and len(found) >= limit:
            break
    return found


class EnrichmentCache:
    """Message id to enrichment lookup kept in front of the store."""

    def __init__(self, maxsize: int = 1024, ttl: int = 3600) -> None:
        self._cache: TTLCache[str, Enrichment] | LRUCache[str, Enrichment]
        if ttl > 0:
            self._cache = TTLCache(maxsize=maxsize, ttl=ttl)
        else:
            self._cache = LRUCache(maxsize=maxsize)

    def get(self, message_id: str) -> Enrichment | None:
        return self._cache.get(message_id)

    def put(self, message_id: str, enrichment: Enrichment) -> None:
        self._cache[message_id] = enrichment

    def __contains__(self, message_id: object) -> bool:
        return message_id in self._cache

    def __len__(self) -> int:
        return len(self._cache)


class EnrichmentService:
    """Describes images and summarizes links for messages after they are stored.

    Results are checked in the cache, then the store, before any external
    service is called. A failure for one image or link never fails the
    whole message.
    """

    def __init__(
        self,
        store: MessageStore,
        config: EnrichmentConfig,
        describer: ImageDescriber | None = None,
        summarizer: UrlSummarizer | None = None,
        cache: EnrichmentCache | None = None,
    ) -> None:
        self._store = store
        self._config = config
        self._describer = describer if config.vision_enabled else None
        self._summarizer = summarizer if config.url_summaries_enabled else None
        self._cache = cache or EnrichmentCache(config.cache_size, config.cache_ttl)

    @property
    def cache(self) -> EnrichmentCache:
        return self._cache

    def urls_for(self, message: Message) -> list[str]:
        return extract_urls(
            message.text,
            self._config.skip_domains,
            self._config.max_urls_per_message,
        )

    def needs_enrichment(self, message: Message) -> bool:
        """Whether there is anything to describe or summarize."""
        if message.is_agent:
            return False
        if self._describer is not None and message.image_urls:
            return True
        return self._summarizer is not None and bool(self.urls_for(message))

    def lookup(self, message_id: str) -> Enrichment | None:
        """Return known enrichment for a message without calling any service."""
        cached = self._cache.get(message_id)
        if cached is not None:
            return cached

        try:
            stored = self._store.get_message(message_id)
        except StorageError as e:
            log.warning("enrichment_lookup_failed", message_id=message_id, error=str(e))
            return None

        if stored is not None and stored.enrichment is not None:
            self._cache.put(message_id, stored.enrichment)
            return stored.enrichment
        return None

    async def enrich(self, message: Message) -> Enrichment | None:
        """Produce and store enrichment for a message that is already stored.

        Returns:
            The enrichment, or None if the message has nothing to enrich
        """
        if not self.needs_enrichment(message):
            return None

        known = self.lookup(message.message_id)
        if known is not None:
            log.debug("enrichment_cache_hit", message_id=message.message_id)
            return known

        descriptions = await self._describe_images(message)
        summaries = await self._summarize_links(message)

        enrichment = Enrichment(
            image_descriptions=tuple(descriptions),
            link_summaries=tuple(summaries),
        )
        if enrichment.is_empty:
            return None

        self._cache.put(message.message_id, enrichment)

        try:
            if not self._store.update_enrichment(message.message_id, enrichment):
                log.warning("enrichment_target_missing", message_id=message.message_id)
        except StorageError as e:
            log.error("enrichment_store_failed", message_id=message.message_id, error=str(e))

        log.info(
            "message_enriched",
            message_id=message.message_id,
            images=len(enrichment.image_descriptions),
            links=len(enrichment.link_summaries),
        )
        return enrichment

    async def _describe_images(self, message: Message) -> list[str]:
        if self._describer is None:
            return []
        descriptions = []
        for url in message.image_urls:
            try:
                description = await self._describer.describe_image(url)
            except Exception as e:
                log.warning("image_description_failed", message_id=message.message_id, error=str(e))
                continue
            if description:
                descriptions.append(description)
        return descriptions

    async def _summarize_links(self, message: Message) -> list[LinkSummary]:
        if self._summarizer is None:
            return []
        summaries = []
        for url in self.urls_for(message):
            try:
                summaries.append(await self._summarizer.summarize_url(url))
            except Exception as e:
                log.warning("url_summary_failed", url=url, error=str(e))
                summaries.append(LinkSummary(url=url, error=str(e)))
        return summaries
