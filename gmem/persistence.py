"""
Whole-file persistence for the record set.

The store is one JSON array of records. Every write replaces the whole
file via a temp file and an atomic rename, so a concurrent reader sees
either the old or the new file, never a partial one.
"""

import json
import logging
import os
import sys
import time
import uuid
from pathlib import Path
from typing import Any, Iterable

from .errors import ParseFailure
from .types import Record

logger = logging.getLogger(__name__)

# os.replace can fail transiently on Windows while a reader has the target open
_REPLACE_RETRIES = 10
_REPLACE_RETRY_DELAY = 0.05


def atomic_write_text(path: Path, data: str) -> None:
    """Write text to ``path`` atomically using a sibling temp file and rename.

    This is the only place that relies on rename being atomic; a platform
    without that guarantee needs a different body here and nowhere else.
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    temp_path = path.parent / f".{path.name}.{uuid.uuid4().hex}.tmp"

    try:
        with open(temp_path, "w", encoding="utf-8") as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())

        if sys.platform == "win32":
            for i in range(_REPLACE_RETRIES):
                try:
                    os.replace(temp_path, path)
                    break
                except OSError:
                    if i == _REPLACE_RETRIES - 1:
                        raise
                    time.sleep(_REPLACE_RETRY_DELAY)
        else:
            os.replace(temp_path, path)
    except BaseException:
        try:
            temp_path.unlink()
        except FileNotFoundError:
            pass
        raise


def dump_records(records: Iterable[Record]) -> str:
    """Serialize records in the store/export encoding."""
    return json.dumps(
        [r.to_dict() for r in records], indent=2, ensure_ascii=False,
    ) + "\n"


def parse_records(raw: str, source: Path | None = None) -> list[Record]:
    """Decode the store encoding. Blank input is an empty store.

    Raises:
        ParseFailure: if the text is not a JSON array of valid records
    """
    if not raw.strip():
        return []
    try:
        data: Any = json.loads(raw)
    except json.JSONDecodeError as e:
        raise ParseFailure(source, f"invalid JSON ({e})") from e
    if not isinstance(data, list):
        raise ParseFailure(source, f"expected a JSON array, got {type(data).__name__}")
    records = []
    for i, item in enumerate(data):
        try:
            records.append(Record.from_dict(item))
        except ValueError as e:
            raise ParseFailure(source, f"record {i}: {e}") from e
    return records


class RecordFile:
    """
    The on-disk record set for one store.

    Holds no state beyond the path: every load() reads the file fresh and
    every store() rewrites it in full.
    """

    def __init__(self, path: Path):
        self.path = Path(path)

    def exists(self) -> bool:
        return self.path.exists()

    def load(self) -> list[Record]:
        """Read all records. A missing file is an empty store.

        Raises:
            ParseFailure: if the file exists but cannot be decoded
            OSError: if the file cannot be read
        """
        try:
            raw = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return []
        except UnicodeDecodeError as e:
            raise ParseFailure(self.path, f"not valid UTF-8 ({e})") from e
        records = parse_records(raw, self.path)
        logger.debug("Loaded %d records from %s", len(records), self.path)
        return records

    def store(self, records: list[Record]) -> None:
        """Atomically replace the file with ``records``."""
        atomic_write_text(self.path, dump_records(records))
        logger.debug("Wrote %d records to %s", len(records), self.path)
