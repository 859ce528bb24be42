"""
Shared pytest fixtures for gmem tests.

Provides a controllable clock so timestamps and recency scores are
deterministic, and isolates the config directory from the real home.
"""

from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from gmem.api import MemoryStore
from gmem.config import StoreConfig


# Whole seconds, so stored millisecond timestamps parse back exactly
EPOCH = datetime(2026, 1, 15, 4, 0, 0, tzinfo=timezone.utc)


class FixedClock:
    """A clock that only moves when told to."""

    def __init__(self, start: datetime = EPOCH):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture(autouse=True)
def isolated_config_dir(tmp_path, monkeypatch):
    """Keep config and error logs out of the real home directory."""
    config_dir = tmp_path / "gmem-config"
    monkeypatch.setenv("GMEM_CONFIG_DIR", str(config_dir))
    monkeypatch.delenv("GMEM_STORE_PATH", raising=False)
    return config_dir


@pytest.fixture
def clock():
    return FixedClock()


@pytest.fixture
def store_file(tmp_path) -> Path:
    return tmp_path / "store" / "memory.json"


@pytest.fixture
def store(store_file, clock):
    """A MemoryStore on a fresh file with a fixed clock."""
    config = StoreConfig.for_file(store_file, lock_timeout=5.0)
    with MemoryStore(config, clock=clock) as s:
        yield s
