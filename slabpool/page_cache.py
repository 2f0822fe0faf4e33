"""Page-granular span allocator that splits and merges runs of pages."""

from __future__ import annotations

import threading
from dataclasses import dataclass

from slabpool.common import Heap
from slabpool.stats import MemoryPoolStats

PAGE_SIZE = 4096


@dataclass(eq=False)
class _Span:
    address: int
    num_pages: int


class PageCache:
    """Hands out runs of whole pages, reusing released runs before mapping new ones.

    Released spans are kept in per-size free lists, most recently released
    first. A request is served from the smallest free span that is large
    enough; any excess is split off and kept free. On release a span is
    merged with the free span that directly follows it.
    """

    def __init__(self, heap: Heap | None = None,
                 stats: MemoryPoolStats | None = None) -> None:
        self.heap = heap if heap is not None else Heap()
        self.stats = stats if stats is not None else MemoryPoolStats()
        self._lock = threading.Lock()
        # Per page count, a stack of free spans whose last item is the head.
        self._free: dict[int, list[_Span]] = {}
        # Start address to span, for every span that can be given back.
        self._spans: dict[int, _Span] = {}

    def allocate_span(self, num_pages: int) -> int:
        """Return the start address of ``num_pages`` contiguous pages."""
        if num_pages <= 0:
            raise ValueError(f"page count must be positive, got {num_pages}")
        self.stats.record_page_allocate_span()
        with self._lock:
            fitting = [pages for pages in self._free if pages >= num_pages]
            if fitting:
                span = self._pop(min(fitting))
                if span.num_pages > num_pages:
                    self._push(_Span(span.address + num_pages * PAGE_SIZE,
                                     span.num_pages - num_pages))
                    span.num_pages = num_pages
                self._spans[span.address] = span
                return span.address

            address = self._system_alloc(num_pages)
            self._spans[address] = _Span(address, num_pages)
            return address

    def deallocate_span(self, address: int, num_pages: int) -> None:
        """Give back a span; addresses this cache never handed out are ignored."""
        if num_pages <= 0:
            raise ValueError(f"page count must be positive, got {num_pages}")
        self.stats.record_page_deallocate_span()
        with self._lock:
            span = self._spans.get(address)
            if span is None:
                return

            next_address = address + num_pages * PAGE_SIZE
            following = self._spans.get(next_address)
            if following is not None and self._remove(following):
                span.num_pages += following.num_pages
                del self._spans[next_address]

            self._push(span)

    def free_spans(self) -> dict[int, tuple[int, ...]]:
        """Map each page count to the free span addresses of that size, head first."""
        with self._lock:
            return {
                pages: tuple(span.address for span in reversed(stack))
                for pages, stack in sorted(self._free.items())
            }

    def _system_alloc(self, num_pages: int) -> int:
        self.stats.record_system_alloc()
        return self.heap.map(num_pages * PAGE_SIZE)

    def _push(self, span: _Span) -> None:
        self._free.setdefault(span.num_pages, []).append(span)

    def _pop(self, pages: int) -> _Span:
        stack = self._free[pages]
        span = stack.pop()
        if not stack:
            del self._free[pages]
        return span

    def _remove(self, span: _Span) -> bool:
        stack = self._free.get(span.num_pages)
        if not stack:
            return False
        for position, candidate in enumerate(stack):
            if candidate is span:
                del stack[position]
                if not stack:
                    del self._free[span.num_pages]
                return True
        return False