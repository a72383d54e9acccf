from __future__ import annotations

from typing import Dict, Protocol


class RequestQueue(Protocol):
    """
    Durable request bookkeeping shared by the sitemap walk and product phase.
    ``add_request`` returns False for URLs that were already added.
    """

    def add_request(self, url: str) -> bool:
        ...

    def mark_handled(self, url: str) -> None:
        ...

    def handled_count(self) -> int:
        ...


class MemoryRequestQueue:
    """In-process implementation keyed by URL (the request unique key)."""

    def __init__(self) -> None:
        self._requests: Dict[str, bool] = {}

    def __len__(self) -> int:
        return len(self._requests)

    def __contains__(self, url: object) -> bool:
        return url in self._requests

    def add_request(self, url: str) -> bool:
        if url in self._requests:
            return False
        self._requests[url] = False
        return True

    def mark_handled(self, url: str) -> None:
        self._requests[url] = True

    def handled_count(self) -> int:
        return sum(1 for handled in self._requests.values() if handled)
