from __future__ import annotations

import asyncio
import gzip
import inspect
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Union

from aiohttp import ClientSession
from bs4 import BeautifulSoup

from ..adapters.base import SitemapEntry
from ..storage.request_queue import RequestQueue
from ..utils.http import fetch_bytes, fetch_text
from ..utils.parsing import clean_text

logger = logging.getLogger(__name__)

FilterPredicate = Callable[[str, Optional[str], bool], Union[bool, Awaitable[bool]]]
UrlMapper = Callable[[str], Any]

# Leaf entries evaluated between explicit yields to the event loop.
_YIELD_EVERY = 500


class SitemapParseError(ValueError):
    """Document is neither a ``<urlset>`` nor a ``<sitemapindex>``."""


@dataclass
class ParsedSitemap:
    urls: List[SitemapEntry] = field(default_factory=list)
    sitemaps: List[SitemapEntry] = field(default_factory=list)


@dataclass
class SitemapWalkResult:
    requests: List[Any] = field(default_factory=list)
    fetched: int = 0
    failed: List[str] = field(default_factory=list)
    skipped: int = 0


def _entry(node: Any, is_sitemap_index: bool) -> Optional[SitemapEntry]:
    loc = node.find("loc", recursive=False)
    url = clean_text(loc.get_text()) if loc else ""
    if not url:
        return None
    lastmod = node.find("lastmod", recursive=False)
    last_modified = clean_text(lastmod.get_text()) if lastmod else ""
    return SitemapEntry(url=url, last_modified=last_modified or None, is_sitemap_index=is_sitemap_index)


def parse_sitemap(body: Union[str, bytes]) -> ParsedSitemap:
    """
    Read ``<url>`` leaves and nested ``<sitemap>`` entries from a sitemap
    document, in document order.
    """
    soup = BeautifulSoup(body, "xml")
    if soup.find(["urlset", "sitemapindex"]) is None:
        raise SitemapParseError("document has no <urlset> or <sitemapindex> root")
    parsed = ParsedSitemap()
    for node in soup.find_all("url"):
        entry = _entry(node, False)
        if entry:
            parsed.urls.append(entry)
    for node in soup.find_all("sitemap"):
        entry = _entry(node, True)
        if entry:
            parsed.sitemaps.append(entry)
    return parsed


async def _resolve(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


class SitemapWalker:
    """
    Walks sitemap trees with a fixed pool of workers.
    - Accepted ``<url>`` entries are mapped and collected, keyed by raw URL.
    - Accepted ``<sitemap>`` entries go back onto the work queue.
    - The request queue de-duplicates URLs; ``max_fetches`` caps documents.
    """

    def __init__(
        self,
        session: ClientSession,
        request_queue: RequestQueue,
        *,
        max_concurrency: int = 1,
        timeout: float = 10.0,
        retries: int = 5,
        max_fetches: int = 1000,
    ) -> None:
        self.session = session
        self.request_queue = request_queue
        self.max_concurrency = max(1, max_concurrency)
        self.timeout = timeout
        self.retries = retries
        self.max_fetches = max_fetches

    async def _download(self, url: str) -> Optional[Union[str, bytes]]:
        if url.lower().split("?", 1)[0].endswith(".gz"):
            raw = await fetch_bytes(self.session, url, timeout=self.timeout, retries=self.retries)
            if raw is None:
                return None
            return gzip.decompress(raw) if raw[:2] == b"\x1f\x8b" else raw
        return await fetch_text(self.session, url, timeout=self.timeout, retries=self.retries)

    async def walk(
        self,
        sitemap_urls: Iterable[str],
        filter_predicate: FilterPredicate,
        url_mapper: Optional[UrlMapper] = None,
        limit: int = 0,
    ) -> SitemapWalkResult:
        result = SitemapWalkResult()
        collected: Dict[str, Any] = {}
        q: asyncio.Queue[str] = asyncio.Queue()

        def schedule(url: str) -> bool:
            if not self.request_queue.add_request(url):
                return False
            q.put_nowait(url)
            return True

        async def process(url: str) -> None:
            if result.fetched >= self.max_fetches:
                result.skipped += 1
                logger.warning("Sitemap fetch ceiling (%d) reached, skipping %s", self.max_fetches, url)
                return
            result.fetched += 1

            body = await self._download(url)
            self.request_queue.mark_handled(url)
            if body is None:
                result.failed.append(url)
                return

            logger.debug("Parsing sitemap %s", url)
            parsed = parse_sitemap(body)

            for index, entry in enumerate(parsed.urls, start=1):
                if index % _YIELD_EVERY == 0:
                    await asyncio.sleep(0)
                if not await _resolve(filter_predicate(entry.url, entry.last_modified, False)):
                    continue
                if limit > 0 and len(collected) >= limit:
                    break
                if entry.url not in collected:
                    logger.debug("Adding product url %s", entry.url)
                    collected[entry.url] = url_mapper(entry.url) if url_mapper else entry.url

            for entry in parsed.sitemaps:
                if await _resolve(filter_predicate(entry.url, entry.last_modified, True)):
                    if schedule(entry.url):
                        logger.debug("Found subsitemap url %s", entry.url)

        async def worker() -> None:
            while True:
                url = await q.get()
                try:
                    await process(url)
                except Exception as exc:  # broad catch to keep the walk moving
                    result.failed.append(url)
                    logger.warning("Sitemap %s failed: %r", url, exc)
                finally:
                    q.task_done()

        for url in sitemap_urls:
            schedule(url)

        workers = [asyncio.create_task(worker()) for _ in range(self.max_concurrency)]
        try:
            await q.join()
        finally:
            for w in workers:
                w.cancel()
            await asyncio.gather(*workers, return_exceptions=True)

        result.requests = list(collected.values())
        logger.info(
            "Found %d URLs from %d sitemap URLs (%d failed)",
            len(result.requests),
            result.fetched,
            len(result.failed),
        )
        return result
