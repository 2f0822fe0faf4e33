"""Optional counters describing how allocator requests were served."""

from __future__ import annotations

import threading
from collections import Counter
from dataclasses import dataclass, fields
from typing import TextIO

from slabpool.common import ALIGNMENT, FREE_LIST_SIZE

_TOP_CLASSES = 8


@dataclass(frozen=True)
class StatsSnapshot:
    """Counter values at one moment."""

    allocate_calls: int = 0
    deallocate_calls: int = 0
    local_hit_count: int = 0
    local_miss_count: int = 0
    fetch_from_central_count: int = 0
    return_to_central_count: int = 0
    central_fetch_range_calls: int = 0
    central_return_range_calls: int = 0
    page_allocate_span_calls: int = 0
    page_deallocate_span_calls: int = 0
    system_alloc_calls: int = 0


_COUNTERS = tuple(f.name for f in fields(StatsSnapshot))


def _top_size_classes(label: str, counts: dict[int, int]) -> str:
    ranked = sorted(
        ((index, count) for index, count in counts.items() if count > 0),
        key=lambda item: (-item[1], item[0]),
    )
    if not ranked:
        return f"{label} none\n"
    parts = "".join(
        f" {(index + 1) * ALIGNMENT}B={count}" for index, count in ranked[:_TOP_CLASSES]
    )
    return f"{label}{parts}\n"


class MemoryPoolStats:
    """Thread-safe counters; recording does nothing while ``enabled`` is false."""

    def __init__(self, enabled: bool = False) -> None:
        self.enabled = enabled
        self._lock = threading.Lock()
        self._counts = dict.fromkeys(_COUNTERS, 0)
        self._per_class_fetch: Counter[int] = Counter()
        self._per_class_return: Counter[int] = Counter()

    def reset(self) -> None:
        """Set every counter back to zero."""
        with self._lock:
            self._counts = dict.fromkeys(_COUNTERS, 0)
            self._per_class_fetch.clear()
            self._per_class_return.clear()

    def snapshot(self) -> StatsSnapshot:
        """Return the current counter values."""
        with self._lock:
            return StatsSnapshot(**self._counts)

    def report(self) -> str:
        """Return a human-readable summary of the counters."""
        with self._lock:
            s = StatsSnapshot(**self._counts)
            fetch = dict(self._per_class_fetch)
            ret = dict(self._per_class_return)
        lookups = s.local_hit_count + s.local_miss_count
        hit_rate = s.local_hit_count / lookups if lookups else 0.0
        return (
            "MemoryPoolStats\n"
            f"  ThreadCache allocateCalls={s.allocate_calls}"
            f" deallocateCalls={s.deallocate_calls}"
            f" localHitCount={s.local_hit_count}"
            f" localMissCount={s.local_miss_count}"
            f" hitRate={hit_rate:.3f}"
            f" fetchFromCentralCount={s.fetch_from_central_count}"
            f" returnToCentralCount={s.return_to_central_count}\n"
            f"  CentralCache fetchRangeCalls={s.central_fetch_range_calls}"
            f" returnRangeCalls={s.central_return_range_calls}\n"
            f"  PageCache allocateSpanCalls={s.page_allocate_span_calls}"
            f" deallocateSpanCalls={s.page_deallocate_span_calls}"
            f" systemAllocCalls={s.system_alloc_calls}\n"
            + _top_size_classes("  topFetchSizeClasses:", fetch)
            + _top_size_classes("  topReturnSizeClasses:", ret)
        )

    def write(self, stream: TextIO) -> None:
        """Write the summary to ``stream``."""
        stream.write(self.report())

    def _bump(self, name: str, per_class: Counter[int] | None = None,
              index: int | None = None) -> None:
        if not self.enabled:
            return
        with self._lock:
            self._counts[name] += 1
            if per_class is not None and index is not None and 0 <= index < FREE_LIST_SIZE:
                per_class[index] += 1

    def record_allocate(self) -> None:
        self._bump("allocate_calls")

    def record_deallocate(self) -> None:
        self._bump("deallocate_calls")

    def record_local_hit(self, index: int) -> None:
        self._bump("local_hit_count")

    def record_local_miss(self, index: int) -> None:
        self._bump("local_miss_count")

    def record_fetch_from_central(self, index: int) -> None:
        self._bump("fetch_from_central_count", self._per_class_fetch, index)

    def record_return_to_central(self, index: int) -> None:
        self._bump("return_to_central_count", self._per_class_return, index)

    def record_central_fetch_range(self, index: int) -> None:
        self._bump("central_fetch_range_calls")

    def record_central_return_range(self, index: int) -> None:
        self._bump("central_return_range_calls")

    def record_page_allocate_span(self) -> None:
        self._bump("page_allocate_span_calls")

    def record_page_deallocate_span(self) -> None:
        self._bump("page_deallocate_span_calls")

    def record_system_alloc(self) -> None:
        self._bump("system_alloc_calls")