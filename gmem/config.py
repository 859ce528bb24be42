"""
Configuration management for memory stores.

The configuration is a TOML file (``gmem.toml``) in the config directory
(``$GMEM_CONFIG_DIR`` or ``~/.gmem``). It names the store file and holds
lock, default-limit, and logging settings. A StoreConfig value is passed
explicitly to each MemoryStore; nothing here is process-global.

Path values may reference environment variables as ``%VAR%`` and list
fallbacks separated by ``|``::

    store_file = "%GMEM_HOME%/memory.json|~/.gmem/memory.json"
"""

import os
import re
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

import tomli_w

from .lock import DEFAULT_STALE_AGE, DEFAULT_TIMEOUT, LockScope


CONFIG_FILENAME = "gmem.toml"
CONFIG_VERSION = 1
DEFAULT_STORE_FILENAME = "memory.json"

_ENV_VAR_RE = re.compile(r"%([^%]+)%")


def get_config_dir() -> Path:
    """Config directory: $GMEM_CONFIG_DIR or ~/.gmem."""
    env = os.environ.get("GMEM_CONFIG_DIR")
    if env:
        return Path(env).expanduser()
    return Path.home() / ".gmem"


def expand_env_vars(value: str) -> Optional[str]:
    """Expand %VAR% references. Returns None if any variable is unset."""
    missing = False

    def _sub(m: re.Match) -> str:
        nonlocal missing
        val = os.environ.get(m.group(1))
        if val is None:
            missing = True
            return ""
        return val

    expanded = _ENV_VAR_RE.sub(_sub, value)
    return None if missing else expanded


def resolve_path_value(raw: str, base_dir: Path) -> Path:
    """
    Resolve a configured path with %VAR% expansion and | fallbacks.

    The first alternative that expands completely wins. Relative results
    are taken relative to ``base_dir``.

    Raises:
        ValueError: if no alternative resolves
    """
    for alternative in raw.split("|"):
        expanded = expand_env_vars(alternative.strip())
        if expanded:
            p = Path(expanded).expanduser()
            return p if p.is_absolute() else base_dir / p
    raise ValueError(f"No alternative in path {raw!r} could be resolved")


def resolve_store_file(path: Path) -> Path:
    """Map a directory to the default store file inside it."""
    path = Path(path).expanduser()
    if path.is_dir():
        return path / DEFAULT_STORE_FILENAME
    return path


@dataclass
class StoreConfig:
    """Complete store configuration."""
    store_file: Path
    version: int = CONFIG_VERSION

    # Locking
    lock_scope: LockScope = LockScope.FILE
    lock_timeout: float = DEFAULT_TIMEOUT
    stale_lock_age: float = DEFAULT_STALE_AGE

    # Operation defaults
    search_limit: int = 10
    compress_budget: int = 2000
    compress_limit: int = 25

    # Logging
    logs_enabled: bool = False
    logs_dir: Optional[Path] = None
    logs_max_size: int = 1_048_576
    logs_level: str = "info"

    # Where this config was loaded from (None for in-memory configs)
    config_path: Optional[Path] = field(default=None, compare=False)

    @classmethod
    def for_file(cls, store_file: Path, **kwargs: Any) -> "StoreConfig":
        """Config for a store file with everything else defaulted."""
        return cls(store_file=resolve_store_file(Path(store_file)), **kwargs)

    @property
    def store_dir(self) -> Path:
        return self.store_file.parent

    @property
    def log_directory(self) -> Path:
        """Directory for the ops log (defaults to the store directory)."""
        return self.logs_dir if self.logs_dir is not None else self.store_dir


def default_config(config_dir: Path) -> StoreConfig:
    """Defaults for a fresh config directory."""
    return StoreConfig(
        store_file=config_dir / DEFAULT_STORE_FILENAME,
        config_path=config_dir / CONFIG_FILENAME,
    )


def load_config(config_dir: Path) -> StoreConfig:
    """
    Load configuration from a config directory.

    Raises:
        FileNotFoundError: If config doesn't exist
        ValueError: If config is invalid
    """
    config_path = config_dir / CONFIG_FILENAME

    if not config_path.exists():
        raise FileNotFoundError(f"Config not found: {config_path}")

    try:
        with open(config_path, "rb") as f:
            data = tomllib.load(f)
    except tomllib.TOMLDecodeError as e:
        raise ValueError(f"Invalid config {config_path}: {e}") from e

    store = data.get("store", {})
    version = store.get("version", 1)
    if version > CONFIG_VERSION:
        raise ValueError(f"Config version {version} is newer than supported ({CONFIG_VERSION})")

    lock = data.get("lock", {})
    defaults = data.get("defaults", {})
    logs = data.get("logs", {})

    raw_store = store.get("store_file")
    store_file = (
        resolve_store_file(resolve_path_value(raw_store, config_dir))
        if raw_store else config_dir / DEFAULT_STORE_FILENAME
    )
    raw_logs_dir = logs.get("dir")

    try:
        return StoreConfig(
            store_file=store_file,
            version=version,
            lock_scope=LockScope(lock.get("scope", LockScope.FILE.value)),
            lock_timeout=float(lock.get("timeout", DEFAULT_TIMEOUT)),
            stale_lock_age=float(lock.get("stale_age", DEFAULT_STALE_AGE)),
            search_limit=int(defaults.get("search_limit", 10)),
            compress_budget=int(defaults.get("compress_budget", 2000)),
            compress_limit=int(defaults.get("compress_limit", 25)),
            logs_enabled=bool(logs.get("enabled", False)),
            logs_dir=resolve_path_value(raw_logs_dir, config_dir) if raw_logs_dir else None,
            logs_max_size=int(logs.get("max_size", 1_048_576)),
            logs_level=str(logs.get("level", "info")),
            config_path=config_path,
        )
    except (TypeError, ValueError) as e:
        raise ValueError(f"Invalid config {config_path}: {e}") from e


def save_config(config: StoreConfig, config_dir: Path) -> Path:
    """
    Save configuration to the config directory.

    Creates the directory if it doesn't exist.
    """
    config_dir.mkdir(parents=True, exist_ok=True)
    config_path = config_dir / CONFIG_FILENAME

    logs: dict[str, Any] = {
        "enabled": config.logs_enabled,
        "max_size": config.logs_max_size,
        "level": config.logs_level,
    }
    if config.logs_dir is not None:
        logs["dir"] = str(config.logs_dir)

    data = {
        "store": {
            "version": config.version,
            "store_file": str(config.store_file),
        },
        "lock": {
            "scope": LockScope(config.lock_scope).value,
            "timeout": config.lock_timeout,
            "stale_age": config.stale_lock_age,
        },
        "defaults": {
            "search_limit": config.search_limit,
            "compress_budget": config.compress_budget,
            "compress_limit": config.compress_limit,
        },
        "logs": logs,
    }

    with open(config_path, "wb") as f:
        tomli_w.dump(data, f)
    config.config_path = config_path
    return config_path


def load_or_create_config(config_dir: Optional[Path] = None) -> StoreConfig:
    """
    Load existing config or create a new one with defaults.

    GMEM_STORE_PATH, when set, overrides the configured store file.
    This is the main entry point for config management.
    """
    config_dir = config_dir or get_config_dir()
    if (config_dir / CONFIG_FILENAME).exists():
        config = load_config(config_dir)
    else:
        config = default_config(config_dir)
        save_config(config, config_dir)

    override = os.environ.get("GMEM_STORE_PATH")
    if override:
        config.store_file = resolve_store_file(Path(override))
    return config
