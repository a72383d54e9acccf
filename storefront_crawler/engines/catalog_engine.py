from __future__ import annotations

import asyncio
import logging
import re
from typing import Any, Dict, List, Optional
from urllib.parse import urlparse

from aiohttp import ClientSession

from .base import CrawlEngine, CrawlReport
from .batching import HostBatchScheduler
from .sitemap_walker import SitemapWalker
from ..adapters.base import ProductLookupRequest, failed_record, record_data
from ..adapters.records import map_to_dataset
from ..adapters.shopify import StorefrontClient, canonical_id
from ..config import CrawlConfig
from ..export.base import Sink
from ..export.buffer import OutputBuffer, ProcessedIdSet
from ..pipeline.transform import CompiledTransform, compile_transform, default_helpers
from ..storage.key_value import JsonKeyValueStore, KeyValueStore
from ..storage.request_queue import MemoryRequestQueue, RequestQueue
from ..utils.http import create_session
from ..utils.loader import load_symbol
from ..utils.parsing import extract_handle, iterate_start_urls, origin_of, parse_iso_date_safe

logger = logging.getLogger(__name__)

STATS_KEY = "STATS"

_PRODUCT_URL = re.compile(r"/products/")
_PRODUCT_SITEMAP = re.compile(r"sitemap_products_\d+")


class CatalogCrawlEngine(CrawlEngine):
    """
    One catalog run:
    sitemaps -> product URLs -> per-origin batches -> transform -> sink.

    - Operator transforms are compiled before any network activity.
    - Processed ids are loaded at start and saved at the end, so a product
      is emitted at most once across runs.
    """

    def __init__(
        self,
        config: CrawlConfig,
        *,
        sink: Sink,
        state_store: KeyValueStore,
        request_queue: RequestQueue | None = None,
        session: ClientSession | None = None,
    ) -> None:
        config.validate()
        self.config = config
        self.sink = sink
        self.state_store = state_store
        self.request_queue = request_queue if request_queue is not None else MemoryRequestQueue()
        self._session = session
        self.report = CrawlReport()

        self.processed = ProcessedIdSet.load(state_store)
        self.buffer = OutputBuffer(sink, config.buffer_size, enabled=config.buffer_writes)

        helpers: Dict[str, Any] = {"fns": default_helpers(), "custom_data": dict(config.custom_data or {})}
        self.scraper_hook: CompiledTransform = compile_transform(
            "extend_scraper_function",
            config.extend_scraper_function,
            helpers=helpers,
        )
        self.output_pipeline: CompiledTransform = compile_transform(
            "extend_output_function",
            config.extend_output_function,
            map_fn=map_to_dataset,
            output_fn=self._emit,
            helpers=helpers,
        )
        self._updated_since = parse_iso_date_safe(config.updated_since)

    # ---- pipeline pieces ----------------------------------------------------

    def _emit(self, item: Any, ctx: Any = None) -> None:
        self.buffer.push(item)
        self.report.emitted += 1

    async def accept_sitemap_entry(self, url: str, lastmod: Optional[str], is_sitemap: bool) -> bool:
        if is_sitemap:
            # Only product sitemap files are walked.
            return bool(_PRODUCT_SITEMAP.search(url))

        if not _PRODUCT_URL.search(url):
            return False

        if self._updated_since and lastmod:
            modified = parse_iso_date_safe(lastmod)
            if modified and modified < self._updated_since:
                return False

        verdict = {"accepted": True}

        def restrict(result: Any) -> None:
            verdict["accepted"] = verdict["accepted"] and bool(result)

        await self.scraper_hook(
            None,
            {
                "url": url,
                "filter": restrict,
                "is_sitemap": is_sitemap,
                "is_product": True,
                "label": "FILTER_SITEMAP_URL",
            },
        )
        return verdict["accepted"]

    async def execute_batch(self, origin: str, batch: List[ProductLookupRequest], client: StorefrontClient) -> None:
        results = await client.fetch_batch(origin, batch)
        for request, product in results:
            if product is None:
                self.report.not_found += 1
                continue
            product_id = canonical_id(product.id)
            # Check-and-mark happens before the first await for this product.
            if not self.processed.claim(product_id):
                self.report.already_processed += 1
                continue
            failed_before = self.output_pipeline.stats.failed
            try:
                await self.output_pipeline(record_data(product, request.source_url), {})
            except Exception as exc:
                logger.warning("Output pipeline failed for %s: %r", request.source_url, exc)
                self.processed.discard(product_id)
                continue
            if self.output_pipeline.stats.failed > failed_before:
                self.processed.discard(product_id)

    def _lookup_request(self, url: str) -> Optional[ProductLookupRequest]:
        try:
            handle = extract_handle(url)
        except ValueError as exc:
            self.report.failed_requests += 1
            logger.warning("Failed request %s: %s", url, exc)
            self.sink.push(failed_record(url, exc))
            return None
        return ProductLookupRequest(origin=origin_of(url), handle=handle, source_url=url)

    # ---- run ------------------------------------------------------------------

    async def crawl(self) -> CrawlReport:
        cfg = self.config
        seeds = list(iterate_start_urls(cfg.start_urls))
        # Product pages given as seeds are looked up directly.
        product_seeds = [url for url in seeds if _PRODUCT_URL.search(urlparse(url).path)]
        sitemap_urls = [url for url in seeds if url not in product_seeds]
        await self.scraper_hook(None, {"label": "SETUP", "sitemap_urls": sitemap_urls, "product_urls": product_seeds})

        session = self._session or create_session(cfg.user_agent)
        try:
            walker = SitemapWalker(
                session,
                self.request_queue,
                max_concurrency=cfg.max_concurrency,
                timeout=cfg.sitemap_timeout,
                retries=cfg.sitemap_retries,
                max_fetches=cfg.max_sitemap_fetches,
            )
            walk = await walker.walk(sitemap_urls, self.accept_sitemap_entry, limit=cfg.max_requests_per_crawl)
            self.report.sitemaps_fetched = walk.fetched
            self.report.sitemaps_failed = len(walk.failed)
            seeded = set(product_seeds)
            product_urls = product_seeds + [url for url in walk.requests if url not in seeded]
            self.state_store.set_value(STATS_KEY, {"count": len(product_urls)})

            client = StorefrontClient(
                session,
                access_token=cfg.storefront_access_token,
                api_version=cfg.storefront_api_version,
                shop_domain=cfg.storefront_shop_domain,
                timeout=cfg.request_timeout,
                retries=cfg.max_request_retries,
            )
            scheduler = HostBatchScheduler(
                lambda origin, batch: self.execute_batch(origin, batch, client),
                batch_size=cfg.batch_size,
                flush_interval=cfg.flush_interval,
                per_host_concurrency=cfg.per_host_concurrency,
            )

            await self.scraper_hook(None, {"label": "RUN", "product_urls": list(product_urls)})
            await self._enqueue_products(product_urls, scheduler)
            await scheduler.join()

            self.report.batches_sent = scheduler.stats.batches_sent
            self.report.batches_failed = scheduler.stats.batches_failed
            await self.scraper_hook(None, {"label": "FINISHED", "report": self.report.to_dict()})
        finally:
            if self._session is None:
                await session.close()
            self._finish()

        logger.info(
            "Emitted %d products (%d already processed, %d not found, %d failed batches)",
            self.report.emitted,
            self.report.already_processed,
            self.report.not_found,
            self.report.batches_failed,
        )
        return self.report

    def _finish(self) -> None:
        """Final flush, then persist processed ids only if everything was written."""
        try:
            self.buffer.flush()
        except Exception:
            logger.error("Final flush failed with %d items unwritten; processed ids not saved", len(self.buffer))
            raise
        else:
            self.processed.save()
        finally:
            self.sink.close()

    async def _enqueue_products(self, urls: List[str], scheduler: HostBatchScheduler) -> None:
        limit = self.config.max_requests_per_crawl
        # Handled sitemap requests share the queue, so they don't eat the budget.
        ceiling = limit + self.request_queue.handled_count() if limit > 0 else None

        for index, url in enumerate(urls, start=1):
            if ceiling is not None and self.request_queue.handled_count() >= ceiling:
                logger.info("Request ceiling reached, %d product URLs left unprocessed", len(urls) - index + 1)
                break
            if not self.request_queue.add_request(url):
                continue
            self.request_queue.mark_handled(url)
            self.report.product_urls += 1

            request = self._lookup_request(url)
            if request is not None:
                scheduler.enqueue(request)
            if index % self.config.batch_size == 0:
                await asyncio.sleep(0)


def build_engine(config: CrawlConfig, *, sink: Sink | None = None) -> CatalogCrawlEngine:
    """Engine wired to the configured exporter and the JSON state directory."""
    if sink is None:
        exporter_cls = load_symbol(config.exporter)
        sink = exporter_cls(config.output_path)
    return CatalogCrawlEngine(config, sink=sink, state_store=JsonKeyValueStore(config.state_dir))
