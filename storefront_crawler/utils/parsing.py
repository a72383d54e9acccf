from __future__ import annotations

import re
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, Iterator, List, Optional, Sequence
from urllib.parse import unquote, urlparse

from bs4 import BeautifulSoup

_GID_PREFIX = re.compile(r"^gid://shopify/[^/]+/")
_PRODUCT_HANDLE = re.compile(r"/products/([^/?#]+)")


def clean_text(value: Any) -> str:
    """Drop CR/LF and surrounding whitespace (sitemap ``loc``/``lastmod`` values)."""
    if value is None:
        return ""
    return re.sub(r"[\n\r]", "", f"{value}").strip()


def origin_of(url: str) -> str:
    """scheme://host[:port] of ``url``."""
    parsed = urlparse(url)
    return f"{parsed.scheme}://{parsed.netloc}"


def extract_handle(url: str) -> str:
    """
    Product handle from a storefront product URL (``/products/<handle>``).
    Raises ValueError when the path does not contain one.
    """
    match = _PRODUCT_HANDLE.search(urlparse(url).path)
    if not match:
        raise ValueError(f"Cannot derive product handle from URL: {url}")
    return unquote(match.group(1))


def iterate_start_urls(start_urls: Iterable[Any]) -> Iterator[str]:
    """
    Yield each start URL once, accepting plain strings or ``{"url": ...}``
    objects. Blank entries are skipped.
    """
    seen: set[str] = set()
    for entry in start_urls:
        raw = entry.get("url") if isinstance(entry, dict) else entry
        url = clean_text(raw)
        if not url or url in seen:
            continue
        seen.add(url)
        yield url


def strip_gid(value: Any) -> str:
    """Remove the ``gid://shopify/<Type>/`` prefix if present."""
    return _GID_PREFIX.sub("", f"{value}")


def strip_html(html: Optional[str]) -> Optional[str]:
    if not html:
        return None
    text = BeautifulSoup(html, "html.parser").get_text(" ", strip=True)
    return re.sub(r"\s+", " ", text) or None


def strip_url_query(url: str) -> str:
    return f"{url}".split("?", 1)[0]


def unique_defined(values: Iterable[Any]) -> List[Any]:
    """Order-preserving de-duplication that also drops falsy values."""
    out: List[Any] = []
    for value in values:
        if value and value not in out:
            out.append(value)
    return out


def pick_first_available(bases: Sequence[Dict[str, Any]], props: Sequence[str]) -> Any:
    """First property (in ``props`` order) present on any of ``bases``."""
    for prop in props:
        for base in bases:
            if prop in base:
                return base[prop]
    return None


def to_snake_case(value: str) -> str:
    snake = re.sub(r"([A-Z])", r"_\1", value).lower().lstrip("_")
    return re.sub(r"[\s_]+", "_", snake)


def parse_iso_date_safe(value: Optional[str]) -> Optional[datetime]:
    """
    Parse an ISO-8601 date/datetime; naive values are taken as UTC.
    Returns None for blank or unparseable input.
    """
    if not value:
        return None
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed
