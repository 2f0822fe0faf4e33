"""Per-thread caches in front of the span-tracking central cache."""

from __future__ import annotations

import threading

from slabpool.common import ALIGNMENT, MAX_BYTES, Heap, size_class_index
from slabpool.page_cache import PageCache
from slabpool.tracked_central_cache import TrackedCentralCache

# A thread keeps at most this many free blocks of one class before giving some back.
RETURN_THRESHOLD = 256


class TrackedThreadCache:
    """Free blocks owned by one thread, refilled one block at a time.

    Requests larger than ``MAX_BYTES`` bypass the caches and go straight to
    the heap. When a class holds more than ``RETURN_THRESHOLD`` free blocks,
    the most recently freed quarter is kept and the rest goes back to the
    central cache.
    """

    def __init__(self, central: TrackedCentralCache | None = None,
                 heap: Heap | None = None) -> None:
        if central is None:
            central = TrackedCentralCache(PageCache(heap))
        self.central = central
        self.heap = heap if heap is not None else central.page_cache.heap
        # Per class, a stack of free addresses whose last item is the head.
        self._free_lists: dict[int, list[int]] = {}

    def allocate(self, size: int) -> int | None:
        """Return the address of a block of at least ``size`` bytes."""
        if size < 0:
            raise ValueError(f"size must not be negative, got {size}")
        if size == 0:
            size = ALIGNMENT
        if size > MAX_BYTES:
            return self.heap.malloc(size)

        index = size_class_index(size)
        free = self._free_lists.get(index)
        if free:
            return free.pop()
        return self.central.fetch_range(index)

    def deallocate(self, address: int, size: int) -> None:
        """Give back a block obtained from ``allocate`` with the same size."""
        if size < 0:
            raise ValueError(f"size must not be negative, got {size}")
        if size > MAX_BYTES:
            self.heap.free(address)
            return

        index = size_class_index(size)
        free = self._free_lists.setdefault(index, [])
        free.append(address)
        if len(free) > RETURN_THRESHOLD:
            self._return_to_central(index)

    def cached_count(self, index: int) -> int:
        """Return how many free blocks of class ``index`` this cache holds."""
        return len(self._free_lists.get(index, ()))

    def _return_to_central(self, index: int) -> None:
        free = self._free_lists[index]
        batch = len(free)
        if batch <= 1:
            return
        keep = max(batch // 4, 1)
        returned = free[:-keep]
        del free[:-keep]
        if returned:
            self.central.return_range(reversed(returned), index)


class TrackedMemoryPool:
    """Allocator front end giving every calling thread its own ``TrackedThreadCache``."""

    def __init__(self, heap: Heap | None = None) -> None:
        self.heap = heap if heap is not None else Heap()
        self.page_cache = PageCache(self.heap)
        self.central = TrackedCentralCache(self.page_cache)
        self._local = threading.local()

    def allocate(self, size: int) -> int | None:
        """Return the address of a block of at least ``size`` bytes."""
        return self._cache().allocate(size)

    def deallocate(self, address: int, size: int) -> None:
        """Give back a block obtained from ``allocate`` with the same size."""
        self._cache().deallocate(address, size)

    def _cache(self) -> TrackedThreadCache:
        cache = getattr(self._local, "cache", None)
        if cache is None:
            cache = TrackedThreadCache(self.central, self.heap)
            self._local.cache = cache
        return cache