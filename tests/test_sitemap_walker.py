import asyncio
import gzip

import pytest

from storefront_crawler.engines import sitemap_walker
from storefront_crawler.engines.sitemap_walker import SitemapParseError, SitemapWalker, parse_sitemap
from storefront_crawler.storage.request_queue import MemoryRequestQueue

from conftest import FakeSession, PRODUCT_SITEMAP, ROOT_SITEMAP

PRODUCT_URLS = [
    "https://shop.example/products/red-shirt",
    "https://shop.example/products/blue-jeans",
]


def _walker(queue=None, **kwargs):
    return SitemapWalker(FakeSession(), queue if queue is not None else MemoryRequestQueue(), retries=0, **kwargs)


def _shop_filter(calls):
    def accept(url, lastmod, is_sitemap):
        calls.append((url, lastmod, is_sitemap))
        if is_sitemap:
            return "sitemap_products_" in url
        return "/products/" in url

    return accept


def test_parse_sitemap_reads_leaves_and_children():
    parsed = parse_sitemap(PRODUCT_SITEMAP)
    assert [e.url for e in parsed.urls] == ["https://shop.example/", *PRODUCT_URLS]
    # Whitespace and newlines around loc are trimmed; image:loc is not a leaf url.
    assert parsed.urls[1].last_modified == "2024-05-01T10:00:00Z"
    assert parsed.urls[0].last_modified is None
    assert parsed.sitemaps == []

    index = parse_sitemap(ROOT_SITEMAP)
    assert [e.is_sitemap_index for e in index.sitemaps] == [True, True]
    assert index.sitemaps[0].url == "https://shop.example/sitemap_products_1.xml?from=1&to=99"


def test_parse_sitemap_rejects_other_documents():
    with pytest.raises(SitemapParseError):
        parse_sitemap("<html><body>Not here</body></html>")


def test_walk_follows_accepted_sub_sitemaps(fake_sitemaps):
    _, fetched = fake_sitemaps
    calls = []
    result = asyncio.run(_walker().walk(["https://shop.example/sitemap.xml"], _shop_filter(calls)))

    assert sorted(result.requests) == sorted(PRODUCT_URLS)
    assert result.fetched == 2
    assert "https://shop.example/sitemap_pages_1.xml" not in fetched
    leaf_calls = [c for c in calls if c[2] is False]
    assert ("https://shop.example/products/blue-jeans", "2023-01-01", False) in leaf_calls
    assert ("https://shop.example/", None, False) in leaf_calls


def test_walk_maps_accepted_urls_and_dedupes_by_raw_url(fake_sitemaps):
    docs, _ = fake_sitemaps
    docs["https://shop.example/sitemap_products_1.xml?from=1&to=99"] = PRODUCT_SITEMAP.replace(
        "</urlset>", "<url><loc>https://shop.example/products/red-shirt</loc></url></urlset>"
    )
    result = asyncio.run(
        _walker().walk(
            ["https://shop.example/sitemap.xml"],
            _shop_filter([]),
            url_mapper=lambda url: {"url": url, "label": "PRODUCT"},
        )
    )
    assert len(result.requests) == 2
    assert {r["label"] for r in result.requests} == {"PRODUCT"}


def test_walk_stops_accepting_at_limit(fake_sitemaps):
    result = asyncio.run(_walker().walk(["https://shop.example/sitemap.xml"], _shop_filter([]), limit=1))
    assert result.requests == ["https://shop.example/products/red-shirt"]


def test_walk_accepts_async_predicates(fake_sitemaps):
    async def accept(url, lastmod, is_sitemap):
        await asyncio.sleep(0)
        return is_sitemap or url.endswith("blue-jeans")

    result = asyncio.run(_walker(max_concurrency=4).walk(["https://shop.example/sitemap.xml"], accept))
    assert result.requests == ["https://shop.example/products/blue-jeans"]


def test_failed_fetch_is_not_fatal(fake_sitemaps):
    docs, _ = fake_sitemaps
    del docs["https://shop.example/sitemap_pages_1.xml"]
    result = asyncio.run(
        _walker().walk(["https://shop.example/sitemap.xml"], lambda url, lastmod, is_sitemap: True)
    )
    assert result.failed == ["https://shop.example/sitemap_pages_1.xml"]
    assert "https://shop.example/products/red-shirt" in result.requests


def test_unparseable_document_counts_as_failed(fake_sitemaps):
    docs, _ = fake_sitemaps
    docs["https://shop.example/broken.xml"] = "<html>oops</html>"
    result = asyncio.run(_walker().walk(["https://shop.example/broken.xml"], lambda *a: True))
    assert result.failed == ["https://shop.example/broken.xml"]
    assert result.requests == []


def test_self_referential_index_is_fetched_once(fake_sitemaps):
    docs, fetched = fake_sitemaps
    docs["https://shop.example/loop.xml"] = ROOT_SITEMAP.replace(
        "https://shop.example/sitemap_pages_1.xml", "https://shop.example/loop.xml"
    )
    queue = MemoryRequestQueue()
    asyncio.run(_walker(queue).walk(["https://shop.example/loop.xml"], lambda *a: True))
    assert fetched.count("https://shop.example/loop.xml") == 1
    assert queue.handled_count() == 2


def test_fetch_ceiling_bounds_the_walk(fake_sitemaps):
    result = asyncio.run(
        _walker(max_fetches=1).walk(["https://shop.example/sitemap.xml"], lambda *a: True)
    )
    assert result.fetched == 1
    assert result.skipped == 2
    assert result.requests == []


def test_gzipped_sitemaps_are_decompressed(monkeypatch):
    async def fake_fetch_bytes(session, url, *, timeout=15.0, retries=2):
        return gzip.compress(PRODUCT_SITEMAP.encode("utf-8"))

    monkeypatch.setattr(sitemap_walker, "fetch_bytes", fake_fetch_bytes)
    result = asyncio.run(
        _walker().walk(["https://shop.example/sitemap_products_1.xml.gz"], lambda url, lastmod, s: "/products/" in url)
    )
    assert sorted(result.requests) == sorted(PRODUCT_URLS)
