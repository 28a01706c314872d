import pytest

from memoria.config import MemoryConfig
from memoria.memory import (
    MemoryManager,
    Partition,
    ThreadContext,
    best_fit,
    dynamic_partitions,
    first_fit,
    fixed_partitions,
    worst_fit,
)
from memoria.protocol import OpCode


def make_config(scheme="DINAMICAS", algorithm="FIRST", size=1024, partitions=None):
    return MemoryConfig(
        listen_port="8002",
        filesystem_ip="127.0.0.1",
        filesystem_port="8003",
        memory_size=size,
        instructions_path="/tmp",
        response_delay=0,
        scheme=scheme,
        search_algorithm=algorithm,
        partitions=partitions or [],
        log_level="DEBUG",
    )


def assert_contiguous(partitions, total):
    assert partitions[0].start == 0
    for left, right in zip(partitions, partitions[1:]):
        assert right.start == left.end + 1
    for p in partitions:
        assert p.end - p.start + 1 == p.size
    assert sum(p.size for p in partitions) == total


def allocate_context(manager, pid, size):
    partition = manager.allocate(size)
    ctx = ThreadContext(pid=pid, tid=0, size=size, base=partition.start, limit=partition.end)
    manager.add_thread(ctx)
    return ctx


def test_fixed_partitions_layout():
    parts = fixed_partitions([100, 50, 200])
    assert [p.size for p in parts] == [100, 50, 200]
    assert_contiguous(parts, 350)
    assert not any(p.occupied for p in parts)


def test_dynamic_partitions_single_block():
    parts = dynamic_partitions(1024)
    assert parts == [Partition(start=0, end=1023, size=1024)]


def test_search_algorithms_choose_expected_partition():
    parts = fixed_partitions([100, 50, 200])
    assert first_fit(parts, 40) is parts[0]
    assert best_fit(parts, 40) is parts[1]
    assert worst_fit(parts, 40) is parts[2]


def test_search_algorithms_skip_occupied_and_small():
    parts = fixed_partitions([100, 50, 200])
    parts[2].occupied = True
    assert first_fit(parts, 150) is None
    assert best_fit(parts, 150) is None
    assert worst_fit(parts, 60) is parts[0]


def test_check_fit_codes():
    manager = MemoryManager(make_config(scheme="FIJAS", partitions=[100, 200], size=300))
    assert manager.check_fit(301) == OpCode.MAX_SIZE_ERROR
    assert manager.check_fit(250) == OpCode.SIZE_ERROR
    assert manager.check_fit(200) == OpCode.SUCCESS


def test_unknown_scheme_raises():
    with pytest.raises(ValueError):
        MemoryManager(make_config(scheme="PAGINADA"))


def test_unknown_algorithm_raises_on_allocate():
    manager = MemoryManager(make_config(algorithm="NEXT"))
    with pytest.raises(ValueError):
        manager.allocate(10)


def test_scheme_is_case_insensitive():
    manager = MemoryManager(make_config(scheme="dinamicas"))
    assert manager.partitions == dynamic_partitions(1024)


def test_dynamic_allocation_splits_partition():
    manager = MemoryManager(make_config())
    partition = manager.allocate(100)
    assert partition.occupied
    assert partition.start == 0
    assert partition.size == 100
    assert len(manager.partitions) == 2
    assert not manager.partitions[1].occupied
    assert_contiguous(manager.partitions, 1024)


def test_fixed_allocation_does_not_split():
    manager = MemoryManager(make_config(scheme="FIJAS", partitions=[100, 200], size=300))
    partition = manager.allocate(50)
    assert partition is manager.partitions[0]
    assert partition.size == 100
    assert len(manager.partitions) == 2


def test_allocate_returns_none_when_full():
    manager = MemoryManager(make_config(scheme="FIJAS", partitions=[100], size=100))
    assert manager.allocate(100) is not None
    assert manager.allocate(1) is None
    assert manager.check_fit(1) == OpCode.SIZE_ERROR


def test_release_in_order_merges_everything():
    manager = MemoryManager(make_config())
    first = allocate_context(manager, 1, 100)
    second = allocate_context(manager, 2, 200)
    manager.release_process(first)
    manager.release_process(second)
    assert manager.partitions == dynamic_partitions(1024)
    assert (first.base, first.limit) == (0, 0)


def test_release_second_merges_with_following_only():
    manager = MemoryManager(make_config())
    first = allocate_context(manager, 1, 100)
    second = allocate_context(manager, 2, 200)
    manager.release_process(second)
    assert len(manager.partitions) == 2
    assert manager.partitions[0].occupied
    assert not manager.partitions[1].occupied
    assert_contiguous(manager.partitions, 1024)
    manager.release_process(first)
    # The first partition is not merged with its successor.
    assert len(manager.partitions) == 2
    assert not any(p.occupied for p in manager.partitions)


def test_release_fixed_keeps_layout():
    manager = MemoryManager(make_config(scheme="FIJAS", partitions=[100, 200], size=300))
    allocate_context(manager, 1, 10)
    ctx = allocate_context(manager, 2, 10)
    manager.release_process(ctx)
    assert [p.size for p in manager.partitions] == [100, 200]
    assert manager.partitions[0].occupied
    assert not manager.partitions[1].occupied


def test_find_and_release_threads():
    manager = MemoryManager(make_config())
    main = allocate_context(manager, 7, 64)
    worker = ThreadContext(pid=7, tid=1, base=main.base, limit=main.limit)
    other = ThreadContext(pid=8, tid=0)
    manager.add_thread(worker)
    manager.add_thread(other)
    assert manager.find_process(7) == [main, worker]
    assert manager.find_thread(7, 1) is worker
    assert manager.find_thread(7, 5) is None
    assert manager.find_by_partition(manager.partitions[0]) is main
    manager.release_thread(worker)
    assert manager.find_process(7) == [main]
    assert manager.find_process(99) == []


def test_read_write_round_trip():
    manager = MemoryManager(make_config())
    manager.write_word(16, 0xDEADBEEF)
    assert manager.read_word(16) == 0xDEADBEEF
    assert manager.snapshot(16, 19) == bytes([0xEF, 0xBE, 0xAD, 0xDE])


def test_fresh_memory_reads_zero():
    manager = MemoryManager(make_config())
    assert manager.read_word(0) == 0


@pytest.mark.parametrize("address", [-1, 1020, 1024])
def test_out_of_range_access_raises(address):
    manager = MemoryManager(make_config())
    with pytest.raises(IndexError):
        manager.read_word(address)
    with pytest.raises(IndexError):
        manager.write_word(address, 1)


def test_write_rejects_values_outside_uint32():
    manager = MemoryManager(make_config())
    with pytest.raises(ValueError):
        manager.write_word(0, 2**32)


def test_snapshot_of_partition_has_partition_size():
    manager = MemoryManager(make_config())
    ctx = allocate_context(manager, 1, 128)
    dump = manager.snapshot(ctx.base, ctx.limit)
    assert len(dump) == 128
    with pytest.raises(IndexError):
        manager.snapshot(0, 1024)