"""Shared per-size-class free lists fed by the page cache."""

from __future__ import annotations

import threading
from collections import deque
from collections.abc import Iterable

from slabpool.common import ALIGNMENT, FREE_LIST_SIZE
from slabpool.page_cache import PAGE_SIZE, PageCache
from slabpool.stats import MemoryPoolStats

# Pages taken from the page cache at once for classes that fit in them.
SPAN_PAGES = 8


def _span_pages(size: int) -> int:
    if size <= SPAN_PAGES * PAGE_SIZE:
        return SPAN_PAGES
    return -(-size // PAGE_SIZE)


class CentralCache:
    """Holds free blocks for every size class, shared by all threads.

    When a class runs dry a fresh span is cut into blocks of that class; part
    of it goes to the caller and the rest stays here.
    """

    def __init__(self, page_cache: PageCache | None = None,
                 stats: MemoryPoolStats | None = None) -> None:
        self.page_cache = page_cache if page_cache is not None else PageCache(stats=stats)
        self.stats = stats if stats is not None else self.page_cache.stats
        self._free_lists: dict[int, deque[int]] = {}
        self._locks: dict[int, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    def fetch_range(self, index: int, batch_num: int) -> list[int]:
        """Take up to ``batch_num`` blocks of class ``index``, head of the list first."""
        self._check_index(index)
        if batch_num < 1:
            raise ValueError(f"batch size must be at least 1, got {batch_num}")
        self.stats.record_central_fetch_range(index)
        with self._lock_for(index):
            free = self._free_lists.get(index)
            if free:
                return [free.popleft() for _ in range(min(batch_num, len(free)))]
            return self._carve_span(index, batch_num)

    def return_range(self, blocks: Iterable[int], index: int) -> None:
        """Put ``blocks`` back at the head of class ``index``, keeping their order."""
        self._check_index(index)
        blocks = list(blocks)
        if not blocks:
            return
        self.stats.record_central_return_range(index)
        with self._lock_for(index):
            self._free_lists.setdefault(index, deque()).extendleft(reversed(blocks))

    def free_count(self, index: int) -> int:
        """Return how many blocks of class ``index`` are held here."""
        self._check_index(index)
        with self._lock_for(index):
            return len(self._free_lists.get(index, ()))

    def _carve_span(self, index: int, batch_num: int) -> list[int]:
        size = (index + 1) * ALIGNMENT
        pages = _span_pages(size)
        start = self.page_cache.allocate_span(pages)
        total = max(1, pages * PAGE_SIZE // size)
        blocks = range(start, start + total * size, size)
        handed_out = min(batch_num, total)
        self._free_lists[index] = deque(blocks[handed_out:])
        return list(blocks[:handed_out])

    def _lock_for(self, index: int) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get(index)
            if lock is None:
                lock = self._locks[index] = threading.Lock()
            return lock

    @staticmethod
    def _check_index(index: int) -> None:
        if not 0 <= index < FREE_LIST_SIZE:
            raise IndexError(f"size class index {index} out of range")