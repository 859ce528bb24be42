"""
Error types and error logging for gmem.

Store failures fall into a small taxonomy:

- InvalidInput: rejected before any I/O (e.g. empty text on add)
- LockTimeout: the store lock could not be obtained in time; safe to retry
- ParseFailure: the store file exists but cannot be decoded
- OSError: read/write/rename failures propagate unwrapped

"Not found" is not an error: delete and purge report it as False / 0.

The CLI logs full stack traces for debugging while showing clean messages
to users.
"""

import os
import traceback
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional


class GmemError(Exception):
    """Base class for store errors."""


class InvalidInput(GmemError, ValueError):
    """Caller supplied input the store refuses to accept."""


class LockTimeout(GmemError, TimeoutError):
    """The store lock was not acquired before the timeout elapsed."""

    def __init__(self, path: Path, timeout: float, holder=None):
        self.path = path
        self.timeout = timeout
        self.holder = holder
        msg = f"Timed out after {timeout:.1f}s acquiring lock: {path}"
        if holder is not None:
            msg += f" (held by pid {holder.pid}, role {holder.role}, since {holder.acquired_at})"
        super().__init__(msg)


class ParseFailure(GmemError, ValueError):
    """A store or import payload exists but cannot be decoded."""

    def __init__(self, path: Optional[Path], reason: str):
        self.path = path
        self.reason = reason
        where = str(path) if path is not None else "<input>"
        super().__init__(f"Cannot parse {where}: {reason}")


def _error_log_path() -> Path:
    """Resolve error log path: next to the store, else in the config directory."""
    store = os.environ.get("GMEM_STORE_PATH")
    if store:
        p = Path(store)
        base = p if p.is_dir() else p.parent
        return base / "gmem-errors.log"
    config_dir = os.environ.get("GMEM_CONFIG_DIR")
    if config_dir:
        return Path(config_dir).expanduser() / "gmem-errors.log"
    return Path.home() / ".gmem" / "gmem-errors.log"


def log_exception(exc: Exception, context: str = "") -> Path:
    """
    Log exception with full traceback to file.

    Args:
        exc: The exception that occurred
        context: Optional context string (e.g., command name)

    Returns:
        Path to the error log file
    """
    log_path = _error_log_path()
    timestamp = datetime.now(timezone.utc).isoformat()
    try:
        log_path.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(log_path, os.O_WRONLY | os.O_CREAT | os.O_APPEND, 0o600)
        with os.fdopen(fd, "a") as f:
            f.write(f"\n{'='*60}\n")
            f.write(f"[{timestamp}]")
            if context:
                f.write(f" {context}")
            f.write("\n")
            f.write("".join(traceback.format_exception(type(exc), exc, exc.__traceback__)))
    except OSError:
        pass  # Can't write error log; don't crash over it
    return log_path
