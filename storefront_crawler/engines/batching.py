from __future__ import annotations

import asyncio
import logging
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Deque, Dict, List, Optional, Set

from ..adapters.base import ProductLookupRequest

logger = logging.getLogger(__name__)

BatchExecutor = Callable[[str, List[ProductLookupRequest]], Awaitable[Any]]


@dataclass
class HostBatchState:
    pending: Deque[ProductLookupRequest] = field(default_factory=deque)
    active_batches: int = 0
    timer: Optional["asyncio.Task[None]"] = None

    @property
    def debounce_timer_armed(self) -> bool:
        return self.timer is not None


@dataclass
class SchedulerStats:
    batches_sent: int = 0
    batches_failed: int = 0
    requests_dropped: int = 0


class HostBatchScheduler:
    """
    Groups product lookups per origin and releases them as batches.

    - A full batch is sent right away if the origin has a free slot.
    - Otherwise a debounce timer (``flush_interval`` seconds) flushes
      whatever is pending.
    - At most ``per_host_concurrency`` batches are in flight per origin;
      when one finishes, the next pending slice is sent.
    - Failed batches are logged and dropped, never retried.

    Every batch and timer runs as a tracked task; :meth:`join` waits for all
    of them, including drains started by finished batches.
    """

    def __init__(
        self,
        execute: BatchExecutor,
        *,
        batch_size: int = 10,
        flush_interval: float = 0.3,
        per_host_concurrency: int = 2,
    ) -> None:
        if batch_size <= 0 or per_host_concurrency <= 0:
            raise ValueError("batch_size and per_host_concurrency must be > 0")
        self.execute = execute
        self.batch_size = batch_size
        self.flush_interval = flush_interval
        self.per_host_concurrency = per_host_concurrency
        self.hosts: Dict[str, HostBatchState] = {}
        self.stats = SchedulerStats()
        self._tasks: Set["asyncio.Task[None]"] = set()
        self._closing = False

    def _track(self, coro: Awaitable[None]) -> "asyncio.Task[None]":
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def _has_capacity(self, state: HostBatchState) -> bool:
        return state.active_batches < self.per_host_concurrency

    def enqueue(self, request: ProductLookupRequest) -> None:
        state = self.hosts.get(request.origin)
        if state is None:
            state = self.hosts[request.origin] = HostBatchState()
        state.pending.append(request)

        if len(state.pending) >= self.batch_size and self._has_capacity(state):
            self.drain(request.origin)
        elif state.timer is None:
            state.timer = self._track(self._debounce(request.origin))

    async def _debounce(self, origin: str) -> None:
        await asyncio.sleep(self.flush_interval)
        state = self.hosts[origin]
        state.timer = None
        if state.pending and self._has_capacity(state):
            self.drain(origin)

    def drain(self, origin: str) -> None:
        """Send the oldest ``batch_size`` pending requests of ``origin``, if allowed."""
        state = self.hosts.get(origin)
        if self._closing or state is None or not state.pending or not self._has_capacity(state):
            return
        batch = [state.pending.popleft() for _ in range(min(self.batch_size, len(state.pending)))]
        state.active_batches += 1
        self._track(self._run_batch(origin, batch))

    async def _run_batch(self, origin: str, batch: List[ProductLookupRequest]) -> None:
        state = self.hosts[origin]
        self.stats.batches_sent += 1
        try:
            await self.execute(origin, batch)
        except Exception:
            self.stats.batches_failed += 1
            self.stats.requests_dropped += len(batch)
            logger.exception("Batch request failed for origin %s (%d handles)", origin, len(batch))
        finally:
            state.active_batches -= 1
            logger.debug("Batch sent to %s, active: %d", origin, state.active_batches)
            if state.pending:
                self.drain(origin)

    @property
    def pending_count(self) -> int:
        return sum(len(s.pending) for s in self.hosts.values())

    async def join(self) -> None:
        """Wait until every batch and timer (including re-scheduled drains) is done."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks))
        if self.pending_count and not self._closing:
            # Only reachable if a timer was cancelled from outside.
            for origin in list(self.hosts):
                self.drain(origin)
            await self.join()

    async def close(self) -> None:
        """Cancel timers and in-flight batches (used when a run is aborted)."""
        self._closing = True
        for task in list(self._tasks):
            task.cancel()
        await asyncio.gather(*list(self._tasks), return_exceptions=True)
