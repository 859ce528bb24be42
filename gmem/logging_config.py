"""
Logging configuration for gmem.

Quiet by default; --verbose turns on debug output to stderr, and a store
can keep a rotating operations log when its config enables one.
"""

import logging
import sys
import warnings
from logging.handlers import RotatingFileHandler
from pathlib import Path

OPS_LOG_FILENAME = "gmem-ops.log"
OPS_LOG_BACKUPS = 3

_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}


def parse_level(name: str) -> int:
    """Map a config level name to a logging level (unknown -> INFO)."""
    return _LEVELS.get((name or "").strip().lower(), logging.INFO)


def configure_quiet_mode(quiet: bool = True):
    """
    Keep library output out of the way of command output.

    Args:
        quiet: If True, suppress warnings and sub-WARNING log records.
    """
    if quiet:
        warnings.filterwarnings("ignore")
        logging.getLogger("gmem").setLevel(logging.WARNING)
        logging.getLogger("mcp").setLevel(logging.ERROR)


def enable_debug_mode():
    """Enable debug-level logging to stderr."""
    # Re-enable warnings
    warnings.filterwarnings("default")

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)

    # Add stderr handler if not already present
    if not any(isinstance(h, logging.StreamHandler) and getattr(h, "stream", None) is sys.stderr
               for h in root_logger.handlers):
        handler = logging.StreamHandler(sys.stderr)
        handler.setLevel(logging.DEBUG)
        handler.setFormatter(logging.Formatter(
            "%(asctime)s %(levelname)s %(name)s: %(message)s",
            datefmt="%H:%M:%S"
        ))
        root_logger.addHandler(handler)

    logging.getLogger("gmem").setLevel(logging.DEBUG)


def ops_log_path(log_dir: Path) -> Path:
    return Path(log_dir) / OPS_LOG_FILENAME


def configure_ops_log(log_dir, max_bytes: int = 1_000_000, level: str = "info"):
    """Configure a persistent operations log.

    Writes to {log_dir}/gmem-ops.log using a rotating file handler
    (``max_bytes`` per file, 3 backups). Returns the handler so it can be
    removed when the caller is done.
    """
    log_path = ops_log_path(log_dir)
    log_path.parent.mkdir(parents=True, exist_ok=True)
    handler = RotatingFileHandler(
        str(log_path),
        maxBytes=max_bytes,
        backupCount=OPS_LOG_BACKUPS,
        encoding="utf-8",
    )
    handler.setLevel(parse_level(level))
    handler.setFormatter(logging.Formatter(
        "%(asctime)s %(levelname)s %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    ))

    gmem_logger = logging.getLogger("gmem")
    gmem_logger.addHandler(handler)
    # Let records at the configured level through even in quiet mode
    if gmem_logger.level == logging.NOTSET or gmem_logger.level > handler.level:
        gmem_logger.setLevel(handler.level)

    return handler


def remove_ops_log(handler) -> None:
    """Detach and close a handler returned by configure_ops_log()."""
    logging.getLogger("gmem").removeHandler(handler)
    handler.close()
