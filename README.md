# slabpool

Memory pool allocators built on size classes. They run over a simulated
address space, so you can study how the allocators behave and try out
allocation policies from Python.

Every allocator hands out integer addresses into a `Heap`
(`slabpool.common`). The heap holds the bytes. `Heap.read(address, size)`
and `Heap.write(address, data)` access them, and they raise `ValueError`
for any access outside a live region. `Heap.map(size)` reserves zeroed,
page-aligned regions that stay for the life of the heap.
`Heap.malloc(size)` and `Heap.free(address)` reserve regions that can be
released again.

## Size classes

`slabpool.common` sets `ALIGNMENT = 8` and `MAX_BYTES = 256 * 1024`. That
gives `FREE_LIST_SIZE` size classes.

- `round_up(nbytes)` rounds up to a multiple of 8.
- `size_class_index(nbytes)` gives the class index for a request. Requests
  below 8 bytes count as 8.

Both raise `ValueError` for negative sizes.

## Allocators

- `slabpool.fixed_pool`
  - `FixedPool(slot_size, block_size=4096, heap=None)` hands out slots of a
    single size. It carves them from blocks taken with `Heap.malloc`.
    Released slots are reused before new ones are carved, the most recently
    released first.
  - `SizeBuckets(heap=None)` holds 64 such pools, one for each multiple of
    8 bytes up to 512. Use `use_memory(size)` and `free_memory(address, size)`
    to allocate and release, and `pool(index)` to get one pool. A request
    for 0 bytes gives `None`. Requests above 512 bytes go to the heap.
- `slabpool.page_cache`
  - `PageCache(heap=None, stats=None)` hands out runs of 4096-byte pages
    with `allocate_span(num_pages)` and takes them back with
    `deallocate_span(address, num_pages)`.
  - A request is served from the smallest free span that is large enough,
    and the rest of that span is split off.
  - A released span is merged with the free span directly after it.
  - `free_spans()` shows the free lists.
- `slabpool.central_cache`
  - `CentralCache(page_cache=None, stats=None)` keeps free blocks for each
    size class, shared by all threads.
  - `fetch_range(index, batch_num)` returns up to `batch_num` blocks. When a
    class is empty, it carves a fresh span (8 pages for classes up to
    32 KiB) into blocks.
  - `return_range(blocks, index)` puts blocks back, and `free_count(index)`
    reports how many are held.
- `slabpool.thread_cache`
  - `MemoryPool(heap=None, stats=None)` gives each calling thread its own
    `ThreadCache`.
  - A thread cache refills in batches sized by `get_batch_num(size)`. A
    refill brings in at most 4 KiB and at most 64 blocks.
  - Once a class holds more than 64 free blocks, the thread cache keeps a
    quarter of them and returns the rest to the central cache.
  - Requests above `MAX_BYTES` go to the heap.
- `slabpool.tracked_central_cache` and `slabpool.tracked_thread_cache`
  - `TrackedMemoryPool(heap=None)` is a variant in which every refill
    fetches a single block.
  - A thread keeps up to 256 free blocks for each class.
  - `TrackedCentralCache(page_cache=None, clock=None)` records a
    `SpanTracker` for each carved span, up to 1024 spans.
  - After 48 returns to a class, or once 1 second has passed since the
    last check, it finds the spans whose blocks are all free. It removes
    their blocks from the free list and releases those spans to the page
    cache. The `clock` argument (default `time.monotonic`) lets you drive
    the timing.
- `slabpool.stats`
  - `MemoryPoolStats(enabled=False)` counts how requests were served: local
    hits and misses, central fetches and returns, span allocations and
    releases, and system allocations. It counts nothing while `enabled` is
    false.
  - `snapshot()` returns a frozen `StatsSnapshot`, and `reset()` zeroes the
    counters.
  - `report()` returns a summary, and `write(stream)` writes that summary to
    a stream. The summary includes the hit rate and the busiest size
    classes.
  - The pools built on `MemoryPool` and `CentralCache` take a stats object.
    The tracked variant does not.

## Example

```python
from slabpool.common import Heap
from slabpool.stats import MemoryPoolStats
from slabpool.thread_cache import MemoryPool

heap = Heap()
stats = MemoryPoolStats(enabled=True)
pool = MemoryPool(heap, stats)

address = pool.allocate(128)
heap.write(address, bytes(range(128)))
assert heap.read(address, 128) == bytes(range(128))
pool.deallocate(address, 128)

print(stats.report())
```

The fixed-slot buckets work the same way:

```python
from slabpool.common import Heap
from slabpool.fixed_pool import SizeBuckets

buckets = SizeBuckets(Heap())
address = buckets.use_memory(40)
buckets.free_memory(address, 40)
```

## What it does not do

- The allocators manage addresses in a simulated `Heap`, not real process
  memory, so they cannot back Python objects.
- There is no command-line tool and no benchmark runner. Timing comparisons
  are left to the user.
- Memory that a `Heap.map` call reserved is never unmapped. Blocks that a
  `FixedPool` took are kept for the life of the pool.

## Tests

```
pip install -e ".[test]"
pytest
```