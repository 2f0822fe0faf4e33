import threading

import pytest

from slabpool.common import Heap
from slabpool.page_cache import PAGE_SIZE, PageCache
from slabpool.stats import MemoryPoolStats


@pytest.fixture
def cache():
    return PageCache(Heap(), MemoryPoolStats(enabled=True))


def test_split_remainder_starts_one_page_later(cache):
    address = cache.allocate_span(2)
    cache.deallocate_span(address, 2)
    assert cache.allocate_span(1) == address
    assert cache.free_spans() == {1: (address + 4096,)}
    assert PAGE_SIZE == 4096


def test_fresh_span_is_page_aligned_and_zeroed(cache):
    address = cache.allocate_span(3)
    assert address % PAGE_SIZE == 0
    assert cache.heap.read(address, 3 * PAGE_SIZE) == bytes(3 * PAGE_SIZE)


def test_released_span_is_reused(cache):
    address = cache.allocate_span(4)
    cache.deallocate_span(address, 4)
    assert cache.free_spans() == {4: (address,)}
    assert cache.allocate_span(4) == address
    assert cache.free_spans() == {}
    assert cache.stats.snapshot().system_alloc_calls == 1


def test_larger_free_span_is_split(cache):
    address = cache.allocate_span(8)
    cache.deallocate_span(address, 8)
    assert cache.allocate_span(3) == address
    assert cache.free_spans() == {8 - 3: (address + 3 * PAGE_SIZE,)}


def test_smallest_fitting_span_is_chosen(cache):
    small = cache.allocate_span(4)
    large = cache.allocate_span(8)
    cache.deallocate_span(small, 4)
    cache.deallocate_span(large, 8)
    assert cache.allocate_span(2) == small
    spans = cache.free_spans()
    assert spans[8] == (large,)
    assert spans[4 - 2] == (small + 2 * PAGE_SIZE,)


def test_request_larger_than_any_free_span_maps_new_memory(cache):
    address = cache.allocate_span(2)
    cache.deallocate_span(address, 2)
    other = cache.allocate_span(5)
    assert other != address
    assert cache.free_spans() == {2: (address,)}
    assert cache.stats.snapshot().system_alloc_calls == 2


def test_release_merges_with_following_free_span(cache):
    address = cache.allocate_span(4)
    cache.deallocate_span(address, 4)
    first = cache.allocate_span(2)
    second = cache.allocate_span(2)
    assert first == address
    assert second == address + 2 * PAGE_SIZE
    cache.deallocate_span(second, 2)
    cache.deallocate_span(first, 2)
    assert cache.free_spans() == {4: (address,)}
    assert cache.allocate_span(4) == address


def test_release_in_forward_order_does_not_merge(cache):
    address = cache.allocate_span(4)
    cache.deallocate_span(address, 4)
    first = cache.allocate_span(2)
    second = cache.allocate_span(2)
    cache.deallocate_span(first, 2)
    cache.deallocate_span(second, 2)
    assert cache.free_spans() == {2: (second, first)}


def test_unknown_address_is_ignored(cache):
    address = cache.allocate_span(1)
    cache.deallocate_span(address + PAGE_SIZE * 100, 1)
    assert cache.free_spans() == {}
    assert cache.stats.snapshot().page_deallocate_span_calls == 1


@pytest.mark.parametrize("pages", [0, -1])
def test_non_positive_page_count_is_rejected(cache, pages):
    with pytest.raises(ValueError):
        cache.allocate_span(pages)
    with pytest.raises(ValueError):
        cache.deallocate_span(0x10000, pages)


def test_stats_count_calls(cache):
    address = cache.allocate_span(4)
    cache.deallocate_span(address, 4)
    cache.allocate_span(2)
    snap = cache.stats.snapshot()
    assert snap.page_allocate_span_calls == 2
    assert snap.page_deallocate_span_calls == 1
    assert snap.system_alloc_calls == 1


def test_disabled_stats_stay_zero():
    cache = PageCache(Heap(), MemoryPoolStats(enabled=False))
    cache.allocate_span(1)
    assert cache.stats.snapshot().page_allocate_span_calls == 0


def test_concurrent_allocations_do_not_overlap(cache):
    results = []
    lock = threading.Lock()

    def worker():
        got = [cache.allocate_span(2) for _ in range(20)]
        with lock:
            results.extend(got)

    threads = [threading.Thread(target=worker) for _ in range(4)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    starts = sorted(results)
    assert len(set(starts)) == len(results) == 80
    assert all(b - a >= 2 * PAGE_SIZE for a, b in zip(starts, starts[1:]))

    extra = cache.allocate_span(2)
    assert extra not in starts
    snap = cache.stats.snapshot()
    assert snap.page_allocate_span_calls == 81
    assert snap.system_alloc_calls == 81