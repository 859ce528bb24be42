"""
Cross-process mutual exclusion for a store file.

The lock is a marker file created with O_CREAT | O_EXCL next to the store
file: whoever creates it owns the store until the marker is removed.
The marker holds "<pid> <acquired-at> <role>" for diagnostics only.

Markers older than ``stale_age`` are presumed to belong to a crashed
owner and are removed by the next acquirer. Reclaiming a marker from a
live but slow owner breaks exclusion; that is accepted in exchange for
never deadlocking on a dead process.
"""

import enum
import logging
import os
import random
import time
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from .errors import LockTimeout
from .types import now_iso

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 2.5
DEFAULT_STALE_AGE = 300.0

# Backoff between attempts, seconds
_BACKOFF_MIN = 0.05
_BACKOFF_MAX = 0.10

LOCK_SUFFIX = ".lock"


class LockRole(str, enum.Enum):
    """Who is mutating the store; recorded in the marker."""
    CLI = "cli"                  # one-shot command
    INTERACTIVE = "interactive"  # long-running shell session
    SERVICE = "service"          # long-running tool server


class LockScope(str, enum.Enum):
    """How lock markers are named for a store file.

    FILE: one marker per store file; every role excludes every other.
    ROLE: one marker per (store file, role); roles do not see each other.
    """
    FILE = "file"
    ROLE = "role"


@dataclass(frozen=True)
class LockInfo:
    """Parsed contents of a lock marker."""
    pid: int
    acquired_at: str
    role: str


def lock_path_for(store_file: Path, role: LockRole = LockRole.CLI,
                  scope: LockScope = LockScope.FILE) -> Path:
    """Marker path for ``store_file`` under the given role and scope."""
    store_file = Path(store_file)
    if LockScope(scope) is LockScope.ROLE:
        name = f"{store_file.name}.{LockRole(role).value}{LOCK_SUFFIX}"
    else:
        name = f"{store_file.name}{LOCK_SUFFIX}"
    return store_file.parent / name


def read_marker(path: Path) -> Optional[LockInfo]:
    """Read a lock marker. Returns None if missing or unreadable."""
    try:
        raw = Path(path).read_text(encoding="utf-8").strip()
    except OSError:
        return None
    parts = raw.split()
    if len(parts) < 2:
        return None
    try:
        pid = int(parts[0])
    except ValueError:
        return None
    role = parts[2] if len(parts) > 2 else ""
    return LockInfo(pid=pid, acquired_at=parts[1], role=role)


def marker_age(path: Path) -> Optional[float]:
    """Seconds since the marker was last written, or None if it is gone."""
    try:
        return max(0.0, time.time() - Path(path).stat().st_mtime)
    except FileNotFoundError:
        return None


def is_stale(path: Path, max_age: float = DEFAULT_STALE_AGE) -> bool:
    """True if a marker exists and is older than ``max_age`` seconds."""
    age = marker_age(path)
    return age is not None and age > max_age


def _remove_marker(path: Path) -> bool:
    try:
        Path(path).unlink()
        return True
    except FileNotFoundError:
        return False


def reclaim_stale_marker(
    path: Path, max_age: float = DEFAULT_STALE_AGE,
) -> tuple[bool, Optional[LockInfo]]:
    """
    Remove a stale marker without ever removing a fresh one.

    The marker is renamed aside first and its age checked again there, so a
    marker another acquirer created after our staleness check is never
    unlinked. A fresh marker moved aside is linked back into place.

    Returns:
        (removed, holder) where holder is the marker that was moved aside
    """
    path = Path(path)
    aside = path.with_name(f"{path.name}.{uuid.uuid4().hex}.reclaim")
    try:
        os.rename(path, aside)
    except FileNotFoundError:
        return False, None

    holder = read_marker(aside)
    if is_stale(aside, max_age):
        _remove_marker(aside)
        return True, holder

    try:
        os.link(aside, path)
    except FileExistsError:
        logger.warning("Fresh lock marker %s replaced while set aside (holder: %s)",
                       path, holder or "unknown")
    _remove_marker(aside)
    return False, holder


class StoreLock:
    """
    File-marker lock guarding one store file.

    Use as a context manager so the marker is removed on every exit path::

        with StoreLock(path, role=LockRole.CLI):
            records = load()
            ...
            store(records)
    """

    def __init__(
        self,
        path: Path,
        *,
        role: LockRole = LockRole.CLI,
        timeout: float = DEFAULT_TIMEOUT,
        stale_age: float = DEFAULT_STALE_AGE,
    ):
        """
        Args:
            path: Marker file path (see lock_path_for)
            role: Caller role written to the marker
            timeout: Default seconds to wait in acquire()
            stale_age: Markers older than this are reclaimed
        """
        self.path = Path(path)
        self.role = LockRole(role)
        self.timeout = timeout
        self.stale_age = stale_age
        self._held = False

    @property
    def held(self) -> bool:
        return self._held

    def _try_create(self) -> bool:
        try:
            fd = os.open(self.path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o644)
        except FileExistsError:
            return False
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(f"{os.getpid()} {now_iso()} {self.role.value}\n")
        except BaseException:
            _remove_marker(self.path)
            raise
        return True

    def acquire(self, timeout: Optional[float] = None) -> None:
        """
        Block until the marker is created or ``timeout`` elapses.

        Raises:
            LockTimeout: if the lock could not be obtained in time
            OSError: if the marker cannot be created for another reason
        """
        if self._held:
            raise RuntimeError(f"Lock already held by this instance: {self.path}")
        timeout = self.timeout if timeout is None else timeout
        self.path.parent.mkdir(parents=True, exist_ok=True)
        deadline = time.monotonic() + timeout

        while True:
            if self._try_create():
                self._held = True
                logger.debug("Acquired %s (%s)", self.path, self.role.value)
                return

            if is_stale(self.path, self.stale_age):
                reclaimed, holder = reclaim_stale_marker(self.path, self.stale_age)
                if reclaimed:
                    logger.warning(
                        "Reclaimed stale lock %s (holder: %s)",
                        self.path, holder or "unknown",
                    )
                    continue

            if time.monotonic() >= deadline:
                raise LockTimeout(self.path, timeout, read_marker(self.path))
            time.sleep(random.uniform(_BACKOFF_MIN, _BACKOFF_MAX))

    def release(self) -> None:
        """Remove the marker. Safe to call when the marker is already gone."""
        if not self._held:
            return
        self._held = False
        if not _remove_marker(self.path):
            logger.warning("Lock marker vanished before release: %s", self.path)
        else:
            logger.debug("Released %s", self.path)

    def is_locked(self) -> bool:
        """True if any process currently holds a marker at this path."""
        return self.path.exists()

    def holder(self) -> Optional[LockInfo]:
        return read_marker(self.path)

    def __enter__(self) -> "StoreLock":
        self.acquire()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release()


def clean_stale_locks(directory: Path, max_age: float = DEFAULT_STALE_AGE) -> int:
    """
    Remove lock markers older than ``max_age`` seconds from a directory.

    Intended for a janitor run alongside long-lived stores. Returns the
    number of markers removed.
    """
    directory = Path(directory)
    if not directory.is_dir():
        return 0
    removed = 0
    for marker in sorted(directory.glob(f"*{LOCK_SUFFIX}")):
        if not marker.is_file() or not is_stale(marker, max_age):
            continue
        reclaimed, holder = reclaim_stale_marker(marker, max_age)
        if reclaimed:
            removed += 1
            logger.info("Removed stale lock %s (holder: %s)", marker, holder or "unknown")
    return removed
