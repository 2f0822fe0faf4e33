"""Per-thread caches of free blocks in front of the shared central cache."""

from __future__ import annotations

import threading

from slabpool.central_cache import CentralCache
from slabpool.common import ALIGNMENT, MAX_BYTES, Heap, size_class_index
from slabpool.page_cache import PageCache
from slabpool.stats import MemoryPoolStats

# A thread keeps at most this many free blocks of one class before giving some back.
RETURN_THRESHOLD = 64
# Upper bound, in bytes, on what one refill from the central cache brings in.
MAX_BATCH_BYTES = 4 * 1024

_BASE_BATCH = (
    (32, 64),
    (64, 32),
    (128, 16),
    (256, 8),
    (512, 4),
    (1024, 2),
)


def get_batch_num(size: int) -> int:
    """Return how many blocks of ``size`` bytes to fetch from the central cache at once."""
    if size <= 0:
        raise ValueError(f"block size must be positive, got {size}")
    base = next((count for limit, count in _BASE_BATCH if size <= limit), 1)
    max_num = max(1, MAX_BATCH_BYTES // size)
    return max(1, min(max_num, base))


class ThreadCache:
    """Free blocks owned by one thread, refilled from and drained to a central cache.

    Requests larger than ``MAX_BYTES`` bypass the caches and go straight to
    the heap.
    """

    def __init__(self, central: CentralCache | None = None, heap: Heap | None = None,
                 stats: MemoryPoolStats | None = None) -> None:
        if central is None:
            central = CentralCache(PageCache(heap, stats), stats)
        self.central = central
        self.heap = heap if heap is not None else central.page_cache.heap
        self.stats = stats if stats is not None else central.stats
        # Per class, a stack of free addresses whose last item is the head.
        self._free_lists: dict[int, list[int]] = {}

    def allocate(self, size: int) -> int | None:
        """Return the address of a block of at least ``size`` bytes."""
        if size < 0:
            raise ValueError(f"size must not be negative, got {size}")
        self.stats.record_allocate()
        if size == 0:
            size = ALIGNMENT
        if size > MAX_BYTES:
            return self.heap.malloc(size)

        index = size_class_index(size)
        free = self._free_lists.get(index)
        if free:
            self.stats.record_local_hit(index)
            return free.pop()

        self.stats.record_local_miss(index)
        return self._fetch_from_central(index)

    def deallocate(self, address: int, size: int) -> None:
        """Give back a block obtained from ``allocate`` with the same size."""
        if size < 0:
            raise ValueError(f"size must not be negative, got {size}")
        self.stats.record_deallocate()
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

    def _fetch_from_central(self, index: int) -> int | None:
        self.stats.record_fetch_from_central(index)
        size = (index + 1) * ALIGNMENT
        blocks = self.central.fetch_range(index, get_batch_num(size))
        if not blocks:
            return None
        free = self._free_lists.setdefault(index, [])
        free.extend(reversed(blocks[1:]))
        return blocks[0]

    def _return_to_central(self, index: int) -> None:
        free = self._free_lists[index]
        batch = len(free)
        if batch <= 1:
            return
        keep = max(batch // 4, 1)
        returned = free[:-keep]
        del free[:-keep]
        if returned:
            self.stats.record_return_to_central(index)
            self.central.return_range(reversed(returned), index)


class MemoryPool:
    """Allocator front end giving every calling thread its own ``ThreadCache``."""

    def __init__(self, heap: Heap | None = None,
                 stats: MemoryPoolStats | None = None) -> None:
        self.heap = heap if heap is not None else Heap()
        self.stats = stats if stats is not None else MemoryPoolStats()
        self.page_cache = PageCache(self.heap, self.stats)
        self.central = CentralCache(self.page_cache, self.stats)
        self._local = threading.local()

    def allocate(self, size: int) -> int | None:
        """Return the address of a block of at least ``size`` bytes."""
        return self._cache().allocate(size)

    def deallocate(self, address: int, size: int) -> None:
        """Give back a block obtained from ``allocate`` with the same size."""
        self._cache().deallocate(address, size)

    def _cache(self) -> ThreadCache:
        cache = getattr(self._local, "cache", None)
        if cache is None:
            cache = ThreadCache(self.central, self.heap, self.stats)
            self._local.cache = cache
        return cache