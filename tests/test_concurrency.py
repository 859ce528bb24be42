"""
Concurrency tests for MemoryStore.

Verifies that several processes can mutate the same store file without
losing records, and that readers never observe a half-written file.

Uses multiprocessing (not threading) to simulate separate gmem processes.
"""

import multiprocessing
from pathlib import Path

from gmem.api import MemoryStore
from gmem.config import StoreConfig


# Worker functions must be top-level for multiprocessing spawn compatibility


def _open(store_path: str) -> MemoryStore:
    return MemoryStore(StoreConfig.for_file(Path(store_path), lock_timeout=30.0))


def _worker_add(store_path: str, worker_id: int, count: int):
    """Worker that adds unique records."""
    store = _open(store_path)
    for i in range(count):
        store.add(f"record from worker {worker_id} number {i}", tags=[f"w{worker_id}"])


def _worker_delete_and_add(store_path: str, ids: list, worker_id: int):
    """Worker that tombstones the given ids, then adds one record."""
    store = _open(store_path)
    for id in ids:
        store.soft_delete(id)
    store.add(f"after deletes {worker_id}")


def _worker_reader(store_path: str, iterations: int):
    """Worker that reads the store in a loop and reports decode errors."""
    store = _open(store_path)
    errors = []
    for _ in range(iterations):
        try:
            store.load()
        except Exception as e:
            errors.append(str(e))
    return errors


def _run(ctx, target, arg_list):
    processes = [ctx.Process(target=target, args=args) for args in arg_list]
    for p in processes:
        p.start()
    for p in processes:
        p.join(timeout=60)
    return processes


class TestConcurrentWrites:
    """Test multiple processes writing to the same store file."""

    def test_parallel_adds_no_lost_updates(self, tmp_path):
        """6 workers each add 8 records; all 48 must be present after."""
        store_path = str(tmp_path / "memory.json")
        num_workers = 6
        per_worker = 8

        ctx = multiprocessing.get_context("spawn")
        processes = _run(ctx, _worker_add,
                         [(store_path, w, per_worker) for w in range(num_workers)])

        for p in processes:
            assert p.exitcode == 0, f"Worker exited with code {p.exitcode}"

        store = MemoryStore(StoreConfig.for_file(Path(store_path)))
        records = store.load()
        assert len(records) == num_workers * per_worker
        assert len({r.id for r in records}) == len(records)
        assert store.stats().tags == {f"w{w}": per_worker for w in range(num_workers)}
        assert not store.lock_path.exists()

    def test_deletes_interleaved_with_adds(self, tmp_path):
        """Tombstones written by one process survive adds from another."""
        store_path = tmp_path / "memory.json"
        store = MemoryStore(StoreConfig.for_file(store_path))
        ids = [store.add(f"seed {i}").id for i in range(6)]

        ctx = multiprocessing.get_context("spawn")
        processes = _run(ctx, _worker_delete_and_add, [
            (str(store_path), ids[:3], 0),
            (str(store_path), ids[3:], 1),
        ])
        for p in processes:
            assert p.exitcode == 0

        stats = store.stats()
        assert (stats.total, stats.active, stats.deleted) == (8, 2, 6)

    def test_reader_never_sees_partial_file(self, tmp_path):
        """Writer + reader running in parallel; reader never fails to decode."""
        store_path = str(tmp_path / "memory.json")
        MemoryStore(StoreConfig.for_file(Path(store_path))).add("seed")

        ctx = multiprocessing.get_context("spawn")
        writer = ctx.Process(target=_worker_add, args=(store_path, 0, 40))
        with ctx.Pool(1) as pool:
            writer.start()
            result = pool.apply_async(_worker_reader, (store_path, 200))
            writer.join(timeout=60)
            errors = result.get(timeout=60)

        assert writer.exitcode == 0
        assert errors == [], f"Reader saw errors: {errors}"
