"""
Tests for the store lock (marker file with O_EXCL).

Covers acquisition, release on every exit path, timeout, stale-marker
reclaim, marker naming per scope, and the janitor sweep.
"""

import os
import threading
import time
from concurrent.futures import ThreadPoolExecutor

import pytest

import gmem.lock as lock_mod
from gmem.errors import LockTimeout
from gmem.lock import (
    LockRole, LockScope, StoreLock, clean_stale_locks, is_stale, lock_path_for,
    read_marker, reclaim_stale_marker,
)


def _age(path, seconds):
    """Backdate a marker's mtime."""
    past = time.time() - seconds
    os.utime(path, (past, past))


# -----------------------------------------------------------------------------
# Naming
# -----------------------------------------------------------------------------

class TestLockPath:
    """Tests for lock_path_for()."""

    def test_file_scope_ignores_role(self, tmp_path):
        store = tmp_path / "memory.json"
        a = lock_path_for(store, LockRole.CLI, LockScope.FILE)
        b = lock_path_for(store, LockRole.SERVICE, LockScope.FILE)
        assert a == b == tmp_path / "memory.json.lock"

    def test_role_scope_separates_roles(self, tmp_path):
        store = tmp_path / "memory.json"
        a = lock_path_for(store, LockRole.CLI, LockScope.ROLE)
        b = lock_path_for(store, LockRole.INTERACTIVE, LockScope.ROLE)
        assert a == tmp_path / "memory.json.cli.lock"
        assert b == tmp_path / "memory.json.interactive.lock"

    def test_accepts_string_values(self, tmp_path):
        p = lock_path_for(tmp_path / "m.json", "service", "role")
        assert p.name == "m.json.service.lock"


# -----------------------------------------------------------------------------
# Acquire / release
# -----------------------------------------------------------------------------

class TestStoreLock:
    """Tests for StoreLock acquire/release."""

    def test_acquire_creates_marker(self, tmp_path):
        path = tmp_path / "m.json.lock"
        lock = StoreLock(path, role=LockRole.INTERACTIVE)
        lock.acquire()
        try:
            assert path.exists()
            info = read_marker(path)
            assert info.pid == os.getpid()
            assert info.role == "interactive"
            assert info.acquired_at
        finally:
            lock.release()
        assert not path.exists()

    def test_context_manager_releases_on_error(self, tmp_path):
        """The marker is removed even when the critical section raises."""
        path = tmp_path / "m.json.lock"
        with pytest.raises(RuntimeError):
            with StoreLock(path):
                assert path.exists()
                raise RuntimeError("boom")
        assert not path.exists()

    def test_creates_parent_directory(self, tmp_path):
        path = tmp_path / "deep" / "dir" / "m.json.lock"
        with StoreLock(path):
            assert path.exists()

    def test_timeout_when_held(self, tmp_path):
        """A second acquirer gives up after its timeout."""
        path = tmp_path / "m.json.lock"
        with StoreLock(path, role=LockRole.SERVICE):
            start = time.monotonic()
            with pytest.raises(LockTimeout) as exc:
                StoreLock(path, timeout=0.2).acquire()
            assert time.monotonic() - start >= 0.2
            assert exc.value.path == path
            assert exc.value.holder.role == "service"
            assert "Timed out" in str(exc.value)

    def test_timeout_is_a_timeout_error(self, tmp_path):
        path = tmp_path / "m.json.lock"
        path.write_text("1 2026-01-01T00:00:00 cli\n")
        with pytest.raises(TimeoutError):
            StoreLock(path, timeout=0.1).acquire()
        assert path.exists()

    def test_release_when_marker_gone(self, tmp_path):
        """release() tolerates a marker that someone else removed."""
        path = tmp_path / "m.json.lock"
        lock = StoreLock(path)
        lock.acquire()
        path.unlink()
        lock.release()
        assert not lock.held

    def test_release_without_acquire_is_noop(self, tmp_path):
        path = tmp_path / "m.json.lock"
        path.write_text("99 x cli\n")
        StoreLock(path).release()
        assert path.exists()

    def test_failed_marker_write_leaves_no_marker(self, tmp_path, monkeypatch):
        """A marker whose contents could not be written does not block others."""
        path = tmp_path / "m.json.lock"

        def broken_now_iso(*args):
            raise OSError("disk full")

        monkeypatch.setattr(lock_mod, "now_iso", broken_now_iso)
        lock = StoreLock(path)
        with pytest.raises(OSError, match="disk full"):
            lock.acquire()
        assert not lock.held
        assert not path.exists()

    def test_double_acquire_rejected(self, tmp_path):
        lock = StoreLock(tmp_path / "m.json.lock")
        lock.acquire()
        try:
            with pytest.raises(RuntimeError):
                lock.acquire()
        finally:
            lock.release()

    def test_threads_are_mutually_exclusive(self, tmp_path):
        """At most one thread is inside the critical section at a time."""
        path = tmp_path / "m.json.lock"
        active = 0
        max_active = 0
        guard = threading.Lock()

        def work(_):
            nonlocal active, max_active
            with StoreLock(path, timeout=30):
                with guard:
                    active += 1
                    max_active = max(max_active, active)
                time.sleep(0.005)
                with guard:
                    active -= 1

        with ThreadPoolExecutor(max_workers=6) as ex:
            list(ex.map(work, range(24)))

        assert max_active == 1
        assert not path.exists()


# -----------------------------------------------------------------------------
# Stale markers
# -----------------------------------------------------------------------------

class TestStaleMarkers:
    """Tests for stale-marker detection and reclaim."""

    def test_is_stale(self, tmp_path):
        path = tmp_path / "m.json.lock"
        assert not is_stale(path, 10)
        path.write_text("1 x cli\n")
        assert not is_stale(path, 10)
        _age(path, 60)
        assert is_stale(path, 10)

    def test_acquire_reclaims_stale_marker(self, tmp_path):
        """A marker older than stale_age is removed and the lock taken."""
        path = tmp_path / "m.json.lock"
        path.write_text("424242 2020-01-01T00:00:00 cli\n")
        _age(path, 600)
        lock = StoreLock(path, timeout=0.5, stale_age=300)
        lock.acquire()
        try:
            assert read_marker(path).pid == os.getpid()
        finally:
            lock.release()

    def test_fresh_marker_not_reclaimed(self, tmp_path):
        path = tmp_path / "m.json.lock"
        path.write_text("424242 2020-01-01T00:00:00 cli\n")
        with pytest.raises(LockTimeout):
            StoreLock(path, timeout=0.1, stale_age=300).acquire()
        assert read_marker(path).pid == 424242

    def test_marker_recreated_during_reclaim_survives(self, tmp_path, monkeypatch):
        """A marker another acquirer creates after our stale check is kept."""
        path = tmp_path / "m.json.lock"
        path.write_text("424242 2020-01-01T00:00:00 cli\n")
        _age(path, 1000)
        other = StoreLock(path, role=LockRole.SERVICE)
        real_is_stale = lock_mod.is_stale
        raced = []

        def racing_is_stale(p, max_age=lock_mod.DEFAULT_STALE_AGE):
            stale = real_is_stale(p, max_age)
            if not raced:
                raced.append(p)
                # Another acquirer reclaims the old marker and takes the lock
                path.unlink()
                other.acquire()
            return stale

        monkeypatch.setattr(lock_mod, "is_stale", racing_is_stale)
        mine = StoreLock(path, role=LockRole.CLI, timeout=0.2)
        try:
            with pytest.raises(LockTimeout):
                mine.acquire()
            assert other.held
            assert not mine.held
            assert read_marker(path).role == "service"
            assert [p.name for p in tmp_path.iterdir()] == ["m.json.lock"]
        finally:
            other.release()

    def test_reclaim_stale_marker(self, tmp_path):
        path = tmp_path / "m.json.lock"
        path.write_text("424242 2020-01-01T00:00:00 cli\n")
        _age(path, 1000)
        removed, holder = reclaim_stale_marker(path, max_age=300)
        assert removed
        assert holder.pid == 424242
        assert list(tmp_path.iterdir()) == []

    def test_reclaim_leaves_fresh_marker_in_place(self, tmp_path):
        path = tmp_path / "m.json.lock"
        path.write_text("424242 2020-01-01T00:00:00 cli\n")
        removed, holder = reclaim_stale_marker(path, max_age=300)
        assert not removed
        assert holder.pid == 424242
        assert [p.name for p in tmp_path.iterdir()] == ["m.json.lock"]
        assert read_marker(path).pid == 424242

    def test_reclaim_missing_marker(self, tmp_path):
        assert reclaim_stale_marker(tmp_path / "m.json.lock") == (False, None)

    def test_read_marker_garbage(self, tmp_path):
        path = tmp_path / "m.json.lock"
        path.write_text("not a marker")
        assert read_marker(path) is None
        assert read_marker(tmp_path / "missing.lock") is None


class TestCleanStaleLocks:
    """Tests for the janitor sweep."""

    def test_removes_only_stale_markers(self, tmp_path):
        old = tmp_path / "a.json.lock"
        fresh = tmp_path / "b.json.lock"
        other = tmp_path / "notes.txt"
        for p in (old, fresh, other):
            p.write_text("1 x cli\n")
        _age(old, 1000)
        _age(other, 1000)

        assert clean_stale_locks(tmp_path, max_age=300) == 1
        assert not old.exists()
        assert fresh.exists()
        assert other.exists()

    def test_missing_directory(self, tmp_path):
        assert clean_stale_locks(tmp_path / "nope") == 0
