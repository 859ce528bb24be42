"""
gmem: a file-backed memory store

A single JSON file of memories with keyword search, budgeted compression,
and cross-process safe mutation.

Quick Start:
    from gmem import MemoryStore

    store = MemoryStore.open("~/notes/memory.json")
    store.add("deploy service to cluster", tags=["ops"])
    hits = store.search("cluster")

CLI Usage:
    gmem add --tag ops "deploy service to cluster"
    gmem search cluster
    gmem compress "deploy cluster" --budget 800

Default Store:
    ~/.gmem/memory.json, configured in ~/.gmem/gmem.toml.

Environment Variables:
    GMEM_STORE_PATH   - Override the store file (or directory)
    GMEM_CONFIG_DIR   - Override the config directory
    GMEM_VERBOSE      - Set to 1 for debug logging
"""

from .api import MemoryStore
from .config import StoreConfig
from .errors import GmemError, InvalidInput, LockTimeout, ParseFailure
from .lock import LockRole, LockScope
from .types import CompressResult, ImportResult, Record, SearchHit, StoreStats

__version__ = "0.1.0"
__all__ = [
    "MemoryStore",
    "StoreConfig",
    "Record",
    "SearchHit",
    "StoreStats",
    "CompressResult",
    "ImportResult",
    "LockRole",
    "LockScope",
    "GmemError",
    "InvalidInput",
    "LockTimeout",
    "ParseFailure",
]
