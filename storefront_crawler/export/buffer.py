from __future__ import annotations

import logging
from typing import Any, Dict, List

from .base import Sink
from ..storage.key_value import KeyValueStore

logger = logging.getLogger(__name__)

PROCESSED_IDS_KEY = "PROCESSED_IDS"


class ProcessedIdSet:
    """
    Canonical product ids already pushed to the sink, persisted between runs
    as an ``{id: true}`` mapping.

    All methods are synchronous, so a check-and-mark done with :meth:`claim`
    can never interleave with another batch on the event loop.
    """

    def __init__(self, store: KeyValueStore, key: str = PROCESSED_IDS_KEY, ids: Dict[str, bool] | None = None) -> None:
        self.store = store
        self.key = key
        self._ids: Dict[str, bool] = dict(ids or {})

    @classmethod
    def load(cls, store: KeyValueStore, key: str = PROCESSED_IDS_KEY) -> "ProcessedIdSet":
        raw = store.get_value(key) or {}
        if not isinstance(raw, dict):
            logger.warning("Ignoring malformed %s value of type %s", key, type(raw).__name__)
            raw = {}
        ids = {f"{k}": True for k, v in raw.items() if v}
        logger.info("Loaded %d processed product ids", len(ids))
        return cls(store, key, ids)

    def __len__(self) -> int:
        return len(self._ids)

    def __contains__(self, product_id: object) -> bool:
        return f"{product_id}" in self._ids

    def should_emit(self, product_id: str) -> bool:
        return f"{product_id}" not in self._ids

    def mark(self, product_id: str) -> None:
        self._ids[f"{product_id}"] = True

    def claim(self, product_id: str) -> bool:
        """Mark ``product_id`` and return True if it had not been seen yet."""
        if not self.should_emit(product_id):
            return False
        self.mark(product_id)
        return True

    def discard(self, product_id: str) -> None:
        """Release a claim whose product never reached the sink."""
        self._ids.pop(f"{product_id}", None)

    def save(self) -> None:
        self.store.set_value(self.key, dict(self._ids))
        logger.info("Persisted %d processed product ids", len(self._ids))


class OutputBuffer:
    """
    Collects finished records and pushes them to the sink in chunks of
    ``capacity``. :meth:`flush` must be called once the run is over.
    With ``enabled=False`` every item is pushed straight through.
    """

    def __init__(self, sink: Sink, capacity: int = 100, *, enabled: bool = True) -> None:
        if capacity <= 0:
            raise ValueError("capacity must be > 0")
        self.sink = sink
        self.capacity = capacity
        self.enabled = enabled
        self._items: List[Any] = []
        self.pushed = 0

    def __len__(self) -> int:
        return len(self._items)

    def push(self, item: Any, ctx: Any = None) -> None:
        if item is None:
            return
        if not self.enabled:
            self.sink.push(item)
            self.pushed += 1
            return
        self._items.append(item)
        if len(self._items) >= self.capacity:
            self.flush()

    def flush(self) -> int:
        if not self._items:
            return 0
        chunk, self._items = self._items, []
        try:
            self.sink.push(chunk)
        except Exception:
            # Keep the chunk (and anything pushed meanwhile) for the next flush.
            self._items = chunk + self._items
            logger.error("Sink %s rejected %d items", type(self.sink).__name__, len(chunk))
            raise
        self.pushed += len(chunk)
        logger.debug("Flushed %d items to %s", len(chunk), type(self.sink).__name__)
        return len(chunk)
