from typing import Any, Dict, List

import pytest

from storefront_crawler.adapters import shopify
from storefront_crawler.config import CrawlConfig
from storefront_crawler.engines import sitemap_walker

ROOT_SITEMAP = """<?xml version="1.0" encoding="UTF-8"?>
<sitemapindex xmlns="http://www.sitemaps.org/schemas/sitemap/0.9">
  <sitemap>
    <loc>https://shop.example/sitemap_products_1.xml?from=1&amp;to=99</loc>
    <lastmod>2024-05-01T10:00:00Z</lastmod>
  </sitemap>
  <sitemap>
    <loc>https://shop.example/sitemap_pages_1.xml</loc>
  </sitemap>
</sitemapindex>
"""

PRODUCT_SITEMAP = """<?xml version="1.0" encoding="UTF-8"?>
<urlset xmlns="http://www.sitemaps.org/schemas/sitemap/0.9"
        xmlns:image="http://www.google.com/schemas/sitemap-image/1.1">
  <url>
    <loc>https://shop.example/</loc>
  </url>
  <url>
    <loc>
      https://shop.example/products/red-shirt
    </loc>
    <lastmod>2024-05-01T10:00:00Z</lastmod>
    <image:image>
      <image:loc>https://cdn.example/red.jpg</image:loc>
    </image:image>
  </url>
  <url>
    <loc>https://shop.example/products/blue-jeans</loc>
    <lastmod>2023-01-01</lastmod>
  </url>
</urlset>
"""

PAGES_SITEMAP = """<?xml version="1.0" encoding="UTF-8"?>
<urlset xmlns="http://www.sitemaps.org/schemas/sitemap/0.9">
  <url><loc>https://shop.example/pages/about</loc></url>
</urlset>
"""

SITEMAPS = {
    "https://shop.example/sitemap.xml": ROOT_SITEMAP,
    "https://shop.example/sitemap_products_1.xml?from=1&to=99": PRODUCT_SITEMAP,
    "https://shop.example/sitemap_pages_1.xml": PAGES_SITEMAP,
}


def product_fragment(product_id: int, handle: str, title: str = None) -> Dict[str, Any]:
    return {
        "id": f"gid://shopify/Product/{product_id}",
        "title": title if title is not None else handle.replace("-", " ").title(),
        "descriptionHtml": "<p>Soft <b>cotton</b></p>",
        "vendor": "Acme",
        "productType": "Shirts",
        "tags": ["summer", "sale"],
        "featuredImage": {"id": "gid://shopify/ProductImage/9", "url": "https://cdn.example/featured.jpg?v=1"},
        "images": {"edges": [{"node": {"id": "gid://shopify/ProductImage/7", "url": "https://cdn.example/a.jpg?v=2"}}]},
        "options": [{"name": "Color", "values": ["Red"]}, {"name": "Size", "values": ["M", "L"]}],
        "variants": {
            "edges": [
                {
                    "node": {
                        "id": f"gid://shopify/ProductVariant/{product_id}1",
                        "title": "Red / M",
                        "sku": f"SKU-{product_id}",
                        "availableForSale": True,
                        "requiresShipping": True,
                        "weight": 0.2,
                        "weightUnit": "KILOGRAMS",
                        "barcode": "123456",
                        "image": {"id": "gid://shopify/ProductImage/7", "url": "https://cdn.example/a.jpg?v=2"},
                        "price": {"amount": "19.90", "currencyCode": "EUR"},
                        "selectedOptions": [{"name": "Color", "value": "Red"}, {"name": "Size", "value": "M"}],
                    }
                }
            ]
        },
    }


CATALOG = {
    "red-shirt": product_fragment(123, "red-shirt"),
    "blue-jeans": product_fragment(456, "blue-jeans"),
}


class FakeSession:
    """Stands in for aiohttp.ClientSession; network helpers are monkeypatched."""

    closed = False

    async def close(self) -> None:
        self.closed = True


@pytest.fixture
def fake_sitemaps(monkeypatch):
    """Serve SITEMAPS (mutable per test) from the monkeypatched fetch_text."""
    docs = dict(SITEMAPS)
    calls: List[str] = []

    async def fake_fetch_text(session, url, *, timeout=15.0, retries=2):
        calls.append(url)
        return docs.get(url)

    monkeypatch.setattr(sitemap_walker, "fetch_text", fake_fetch_text)
    return docs, calls


@pytest.fixture
def fake_storefront(monkeypatch):
    """GraphQL endpoint resolving handles from a catalog; records every POST."""
    state: Dict[str, Any] = {"catalog": dict(CATALOG), "posts": [], "response": None}

    async def fake_post_json(session, url, payload, *, headers=None, timeout=30.0, retries=1):
        state["posts"].append({"url": url, "payload": payload, "headers": headers})
        if state["response"] is not None:
            return state["response"]
        data = {}
        for name, handle in payload["variables"].items():
            alias = "p" + name[1:]
            data[alias] = state["catalog"].get(handle)
        return 200, {"data": data}

    monkeypatch.setattr(shopify, "post_json", fake_post_json)
    return state


@pytest.fixture
def make_config(tmp_path):
    def _make(**overrides: Any) -> CrawlConfig:
        values: Dict[str, Any] = dict(
            start_urls=["https://shop.example/sitemap.xml"],
            storefront_access_token="token-123",
            flush_interval_ms=10,
            output_path=str(tmp_path / "out" / "products.jsonl"),
            state_dir=str(tmp_path / "state"),
        )
        values.update(overrides)
        return CrawlConfig(**values)

    return _make
