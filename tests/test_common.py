import pytest

from slabpool.common import (
    ALIGNMENT,
    FREE_LIST_SIZE,
    MAX_BYTES,
    Heap,
    round_up,
    size_class_index,
)


def test_size_classes_cover_every_small_size():
    assert round_up(1) == 8
    assert round_up(MAX_BYTES - 1) == MAX_BYTES
    assert size_class_index(MAX_BYTES) + 1 == FREE_LIST_SIZE
    assert FREE_LIST_SIZE * ALIGNMENT == 256 * 1024


@pytest.mark.parametrize("n", range(0, 200))
def test_round_up_is_next_multiple(n):
    r = round_up(n)
    assert r % ALIGNMENT == 0
    assert n <= r < n + ALIGNMENT


def test_round_up_keeps_aligned_values():
    assert round_up(ALIGNMENT) == ALIGNMENT
    assert round_up(MAX_BYTES) == MAX_BYTES


@pytest.mark.parametrize("n", range(1, 300))
def test_index_matches_rounded_size(n):
    assert (size_class_index(n) + 1) * ALIGNMENT == round_up(n)


def test_index_bounds():
    assert size_class_index(0) == 0
    assert size_class_index(1) == 0
    assert size_class_index(ALIGNMENT) == 0
    assert size_class_index(ALIGNMENT + 1) == 1
    assert size_class_index(MAX_BYTES) == FREE_LIST_SIZE - 1


def test_negative_sizes_rejected():
    with pytest.raises(ValueError):
        round_up(-1)
    with pytest.raises(ValueError):
        size_class_index(-8)


def test_map_is_zeroed_and_page_aligned():
    heap = Heap()
    addr = heap.map(4096 * 2)
    assert addr % 4096 == 0
    assert heap.read(addr, 4096 * 2) == bytes(4096 * 2)


def test_map_rejects_empty():
    with pytest.raises(ValueError):
        Heap().map(0)


def test_write_read_round_trip():
    heap = Heap()
    addr = heap.malloc(64)
    payload = bytes(range(64))
    heap.write(addr, payload)
    assert heap.read(addr, 64) == payload
    heap.write(addr + 10, b"xyz")
    assert heap.read(addr + 10, 3) == b"xyz"


def test_regions_do_not_overlap():
    heap = Heap()
    regions = [(heap.malloc(n), n) for n in (1, 7, 100, 0, 33)] + [(heap.map(10), 10)]
    ordered = sorted(regions)
    for (a, n), (b, _) in zip(ordered, ordered[1:]):
        assert a + max(n, 1) <= b


def test_out_of_bounds_access_raises():
    heap = Heap()
    addr = heap.malloc(16)
    with pytest.raises(ValueError):
        heap.read(addr, 17)
    with pytest.raises(ValueError):
        heap.write(addr + 15, b"ab")
    with pytest.raises(ValueError):
        heap.read(addr - 1, 1)


def test_free_releases_region():
    heap = Heap()
    addr = heap.malloc(32)
    heap.free(addr)
    with pytest.raises(ValueError):
        heap.read(addr, 1)
    with pytest.raises(ValueError):
        heap.free(addr)


def test_free_rejects_mapped_and_unknown():
    heap = Heap()
    mapped = heap.map(100)
    with pytest.raises(ValueError):
        heap.free(mapped)
    with pytest.raises(ValueError):
        heap.free(mapped + 8)
    assert heap.read(mapped, 4) == bytes(4)