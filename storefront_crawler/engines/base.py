from __future__ import annotations

from dataclasses import dataclass, asdict
from typing import Any, Dict
from abc import ABC, abstractmethod


@dataclass
class CrawlReport:
    sitemaps_fetched: int = 0
    sitemaps_failed: int = 0
    product_urls: int = 0
    batches_sent: int = 0
    batches_failed: int = 0
    not_found: int = 0
    already_processed: int = 0
    failed_requests: int = 0
    emitted: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class CrawlEngine(ABC):
    """
    Abstract engine interface. Implementations own the crawl lifecycle.
    """
    @abstractmethod
    async def crawl(self) -> CrawlReport:  # pragma: no cover - interface
        ...
