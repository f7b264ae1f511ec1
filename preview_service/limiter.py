"""Bounded concurrency for per-variant pipelines and per-file uploads."""

from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any, Callable, Generic, Iterable, List, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")


@dataclass
class Settled(Generic[T, R]):
    """Outcome of one item: either a value or the exception it raised."""

    item: T
    value: Optional[R] = None
    error: Optional[BaseException] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class ConcurrencyLimiter:
    """Runs callables with at most ``limit`` in flight.

    Backed by a fixed-size worker pool whose queue is FIFO, so queued work
    is admitted strictly in submission order as slots free. One item's
    exception never cancels the others.
    """

    def __init__(self, limit: int, name: str = "limiter"):
        if limit < 1:
            raise ValueError("limit must be >= 1")
        self.limit = limit
        self.name = name
        self._lock = threading.Lock()
        self._active = 0
        self._peak = 0

    @property
    def active_count(self) -> int:
        with self._lock:
            return self._active

    @property
    def peak_count(self) -> int:
        """Highest number of simultaneously running items seen so far."""
        with self._lock:
            return self._peak

    def _tracked(self, func: Callable[[T], R], item: T) -> R:
        with self._lock:
            self._active += 1
            self._peak = max(self._peak, self._active)
        try:
            return func(item)
        finally:
            with self._lock:
                self._active -= 1

    def run_all(self, func: Callable[[T], R], items: Iterable[T]) -> List[Settled[T, R]]:
        """Apply func to every item and wait for all of them.

        Results are returned in input order regardless of completion order.
        """
        items = list(items)
        if not items:
            return []
        workers = min(self.limit, len(items))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix=self.name) as pool:
            futures = [pool.submit(self._tracked, func, item) for item in items]
            settled: List[Settled[Any, Any]] = []
            for item, future in zip(items, futures):
                try:
                    settled.append(Settled(item=item, value=future.result()))
                except Exception as exc:
                    settled.append(Settled(item=item, error=exc))
        return settled
