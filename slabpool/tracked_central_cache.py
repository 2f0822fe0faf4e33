"""Central cache that tracks spans and hands whole idle spans back to the page cache."""

from __future__ import annotations

import threading
import time
from collections import deque
from collections.abc import Callable, Iterable
from dataclasses import dataclass

from slabpool.common import ALIGNMENT, FREE_LIST_SIZE
from slabpool.page_cache import PAGE_SIZE, PageCache

SPAN_PAGES = 8
# Returns to one class after which idle spans are looked for.
MAX_DELAY_COUNT = 48
# Seconds after the last look after which a return triggers another.
DELAY_INTERVAL = 1.0
MAX_TRACKERS = 1024


@dataclass(eq=False)
class SpanTracker:
    """Bookkeeping for one span cut into blocks."""

    address: int
    num_pages: int
    block_count: int
    free_count: int

    def contains(self, address: int) -> bool:
        return self.address <= address < self.address + self.num_pages * PAGE_SIZE


def _span_pages(size: int) -> int:
    if size <= SPAN_PAGES * PAGE_SIZE:
        return SPAN_PAGES
    return -(-size // PAGE_SIZE)


class TrackedCentralCache:
    """Shared free lists that hand out one block per fetch.

    Returns are counted per class; after ``MAX_DELAY_COUNT`` returns or
    ``DELAY_INTERVAL`` seconds, spans whose blocks are all free are taken
    off the free list and released to the page cache.
    """

    def __init__(self, page_cache: PageCache | None = None,
                 clock: Callable[[], float] | None = None) -> None:
        self.page_cache = page_cache if page_cache is not None else PageCache()
        self.clock = clock if clock is not None else time.monotonic
        self._free_lists: dict[int, deque[int]] = {}
        self._locks: dict[int, threading.Lock] = {}
        self._locks_guard = threading.Lock()
        self._trackers: list[SpanTracker] = []
        self._trackers_lock = threading.Lock()
        self._delay_counts: dict[int, int] = {}
        self._started = self.clock()
        self._last_return: dict[int, float] = {}

    def fetch_range(self, index: int) -> int | None:
        """Take one block of class ``index``."""
        self._check_index(index)
        with self._lock_for(index):
            free = self._free_lists.get(index)
            if free:
                block = free.popleft()
                tracker = self._tracker_for(block)
                if tracker is not None:
                    with self._trackers_lock:
                        tracker.free_count -= 1
                return block
            return self._carve_span(index)

    def return_range(self, blocks: Iterable[int], index: int) -> None:
        """Put ``blocks`` back at the head of class ``index``, keeping their order."""
        self._check_index(index)
        blocks = list(blocks)
        if not blocks:
            return
        with self._lock_for(index):
            self._free_lists.setdefault(index, deque()).extendleft(reversed(blocks))
            count = self._delay_counts.get(index, 0) + 1
            self._delay_counts[index] = count
            if self._should_release(index, count, self.clock()):
                self._release_idle_spans(index)

    def free_count(self, index: int) -> int:
        """Return how many blocks of class ``index`` are held here."""
        self._check_index(index)
        with self._lock_for(index):
            return len(self._free_lists.get(index, ()))

    def _carve_span(self, index: int) -> int | None:
        size = (index + 1) * ALIGNMENT
        pages = _span_pages(size)
        start = self.page_cache.allocate_span(pages)
        if start is None:
            return None
        block_num = pages * PAGE_SIZE // size
        if block_num > 1:
            self._free_lists[index] = deque(range(start + size, start + block_num * size, size))
            with self._trackers_lock:
                if len(self._trackers) < MAX_TRACKERS:
                    self._trackers.append(SpanTracker(start, pages, block_num, block_num - 1))
        return start

    def _should_release(self, index: int, count: int, now: float) -> bool:
        if count >= MAX_DELAY_COUNT:
            return True
        last = self._last_return.get(index, self._started)
        return now - last >= DELAY_INTERVAL

    def _release_idle_spans(self, index: int) -> None:
        self._delay_counts[index] = 0
        self._last_return[index] = self.clock()

        counts: dict[SpanTracker, int] = {}
        for block in self._free_lists.get(index, ()):
            tracker = self._tracker_for(block)
            if tracker is not None:
                counts[tracker] = counts.get(tracker, 0) + 1

        for tracker, new_free in counts.items():
            with self._trackers_lock:
                tracker.free_count += new_free
                idle = tracker.free_count == tracker.block_count
            if idle:
                free = self._free_lists.get(index, deque())
                self._free_lists[index] = deque(b for b in free if not tracker.contains(b))
                self.page_cache.deallocate_span(tracker.address, tracker.num_pages)

    def _tracker_for(self, address: int) -> SpanTracker | None:
        with self._trackers_lock:
            return next((t for t in self._trackers if t.contains(address)), None)

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