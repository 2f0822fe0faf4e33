"""Fixed-size slot pools and a bank of them indexed by request size."""

from __future__ import annotations

import threading

from slabpool.common import Heap

SLOT_BASE_SIZE = 8
MAX_SLOT_SIZE = 512
MEMORY_POOL_NUM = 64
DEFAULT_BLOCK_SIZE = 4096

# Each block starts with room for a link to the previous block.
_LINK_SIZE = 8


class FixedPool:
    """Hands out slots of one size, carved from blocks taken from a heap.

    Released slots go on a free list and are handed out again, most recent
    first, before any fresh slot is cut from the current block.
    """

    def __init__(self, slot_size: int, block_size: int = DEFAULT_BLOCK_SIZE,
                 heap: Heap | None = None) -> None:
        if slot_size <= 0 or slot_size % SLOT_BASE_SIZE:
            raise ValueError(
                f"slot size must be a positive multiple of {SLOT_BASE_SIZE}, got {slot_size}"
            )
        if block_size < _LINK_SIZE + 2 * slot_size:
            raise ValueError(f"block size {block_size} is too small for slots of {slot_size}")
        self.slot_size = slot_size
        self.block_size = block_size
        self.heap = heap if heap is not None else Heap()
        self._blocks: list[int] = []
        self._cursor = 0
        self._limit = 0
        self._free: list[int] = []
        self._free_lock = threading.Lock()
        self._block_lock = threading.Lock()

    def allocate(self) -> int:
        """Return the address of a free slot."""
        with self._free_lock:
            if self._free:
                return self._free.pop()
        with self._block_lock:
            if self._cursor >= self._limit:
                self._new_block()
            address = self._cursor
            self._cursor += self.slot_size
        return address

    def deallocate(self, address: int | None) -> None:
        """Put a slot back on the free list; a null address is ignored."""
        if not address:
            return
        with self._free_lock:
            self._free.append(address)

    def _new_block(self) -> None:
        block = self.heap.malloc(self.block_size)
        self._blocks.append(block)
        body = block + _LINK_SIZE
        self._cursor = body + (-body % self.slot_size)
        # A slot starting at or past this mark would not fit in the block.
        self._limit = block + self.block_size - self.slot_size + 1


def _bucket(size: int) -> int:
    return (size + SLOT_BASE_SIZE - 1) // SLOT_BASE_SIZE - 1


class SizeBuckets:
    """Routes requests of up to 512 bytes to 64 fixed pools, larger ones to the heap."""

    def __init__(self, heap: Heap | None = None) -> None:
        self.heap = heap if heap is not None else Heap()
        self._pools = tuple(
            FixedPool((i + 1) * SLOT_BASE_SIZE, heap=self.heap)
            for i in range(MEMORY_POOL_NUM)
        )

    def pool(self, index: int) -> FixedPool:
        """Return the pool whose slots are ``(index + 1) * 8`` bytes."""
        if not 0 <= index < MEMORY_POOL_NUM:
            raise IndexError(f"pool index {index} out of range")
        return self._pools[index]

    def use_memory(self, size: int) -> int | None:
        """Allocate ``size`` bytes; a request for zero bytes yields ``None``."""
        if size < 0:
            raise ValueError(f"size must not be negative, got {size}")
        if size == 0:
            return None
        if size > MAX_SLOT_SIZE:
            return self.heap.malloc(size)
        return self.pool(_bucket(size)).allocate()

    def free_memory(self, address: int | None, size: int) -> None:
        """Release memory obtained from ``use_memory`` with the same size."""
        if not address:
            return
        if size > MAX_SLOT_SIZE:
            self.heap.free(address)
            return
        self.pool(_bucket(size)).deallocate(address)