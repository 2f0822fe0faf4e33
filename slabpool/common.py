"""Size classes and a simulated address space shared by the allocators."""

from __future__ import annotations

import bisect
import threading
from dataclasses import dataclass

ALIGNMENT = 8
MAX_BYTES = 256 * 1024
FREE_LIST_SIZE = MAX_BYTES // ALIGNMENT


def _check_size(nbytes: int) -> None:
    if nbytes < 0:
        raise ValueError(f"size must not be negative, got {nbytes}")


def round_up(nbytes: int) -> int:
    """Round ``nbytes`` up to the next multiple of ``ALIGNMENT``."""
    _check_size(nbytes)
    return (nbytes + ALIGNMENT - 1) & ~(ALIGNMENT - 1)


def size_class_index(nbytes: int) -> int:
    """Return the free-list index for a request of ``nbytes`` bytes."""
    _check_size(nbytes)
    nbytes = max(nbytes, ALIGNMENT)
    return (nbytes + ALIGNMENT - 1) // ALIGNMENT - 1


@dataclass
class _Region:
    data: bytearray
    mapped: bool


class Heap:
    """A flat address space of byte regions standing in for system memory.

    ``map`` hands out zeroed, page-aligned regions that live for the life of
    the heap; ``malloc`` hands out regions that are given back with ``free``.
    Reads and writes outside any live region raise ``ValueError``.
    """

    _BASE = 0x10000
    _MAP_ALIGN = 4096
    _MALLOC_ALIGN = 16

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._next = self._BASE
        self._starts: list[int] = []
        self._regions: dict[int, _Region] = {}

    def map(self, size: int) -> int:
        """Reserve ``size`` zeroed bytes at a page-aligned address."""
        if size <= 0:
            raise ValueError(f"mapping size must be positive, got {size}")
        return self._reserve(size, self._MAP_ALIGN, mapped=True)

    def malloc(self, size: int) -> int:
        """Reserve ``size`` bytes that can later be released with ``free``."""
        _check_size(size)
        return self._reserve(size, self._MALLOC_ALIGN, mapped=False)

    def free(self, address: int) -> None:
        """Release a region obtained from ``malloc``."""
        with self._lock:
            region = self._regions.get(address)
            if region is None or region.mapped:
                raise ValueError(f"address {address:#x} was not returned by malloc")
            del self._regions[address]
            del self._starts[bisect.bisect_left(self._starts, address)]

    def read(self, address: int, size: int) -> bytes:
        """Return ``size`` bytes starting at ``address``."""
        _check_size(size)
        with self._lock:
            region, offset = self._locate(address, size)
            return bytes(region.data[offset:offset + size])

    def write(self, address: int, data: bytes) -> None:
        """Store ``data`` starting at ``address``."""
        view = memoryview(data).cast("B")
        with self._lock:
            region, offset = self._locate(address, len(view))
            region.data[offset:offset + len(view)] = view

    def _reserve(self, size: int, alignment: int, mapped: bool) -> int:
        with self._lock:
            start = -(-self._next // alignment) * alignment
            self._next = start + max(size, 1)
            self._regions[start] = _Region(bytearray(size), mapped)
            self._starts.append(start)
            return start

    def _locate(self, address: int, size: int) -> tuple[_Region, int]:
        idx = bisect.bisect_right(self._starts, address) - 1
        if idx >= 0:
            start = self._starts[idx]
            region = self._regions[start]
            offset = address - start
            if offset + size <= len(region.data):
                return region, offset
        raise ValueError(f"access of {size} bytes at {address:#x} is outside any region")