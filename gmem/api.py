"""
Core API for the memory store.

MemoryStore is the only entry point the CLI and the tool server use:
- add(): text + tags -> new record
- search() / compress(): rank active records against a query
- soft_delete() / purge(): tombstone or remove records
- export() / import_records(): move record sets between stores
- stats(): counts and tag histogram

Every mutation runs as one unit under the store lock: load the whole
file, change it in memory, atomically rewrite it. Reads take no lock;
atomic replace guarantees they see a complete snapshot.
"""

import json
import logging
from pathlib import Path
from typing import Any, Iterable, Optional, Union

from .compress import compress_records
from .config import StoreConfig
from .errors import InvalidInput, ParseFailure
from .keywords import extract_keywords
from .lock import LockRole, StoreLock, lock_path_for
from .persistence import RecordFile, dump_records
from .search import search_records
from .types import (
    Clock, CompressResult, ImportResult, Record, SearchHit, StoreStats,
    make_id, normalize_tags, now_iso, split_tag_string, utc_now,
)

logger = logging.getLogger(__name__)


class MemoryStore:
    """
    A record store bound to one file.

    Args:
        config: Store configuration (file path, lock settings, defaults)
        role: Lock role recorded in the marker (and, with role-scoped
            locking, part of the marker name)
        clock: Returns the current aware datetime; injectable for tests
    """

    def __init__(
        self,
        config: StoreConfig,
        *,
        role: LockRole = LockRole.CLI,
        clock: Optional[Clock] = None,
    ):
        self._config = config
        self._role = LockRole(role)
        self._clock: Clock = clock or utc_now
        self._file = RecordFile(config.store_file)
        self._lock_path = lock_path_for(config.store_file, self._role, config.lock_scope)
        self._ops_handler = None

        if config.logs_enabled:
            from .logging_config import configure_ops_log
            self._ops_handler = configure_ops_log(
                config.log_directory,
                max_bytes=config.logs_max_size,
                level=config.logs_level,
            )

    @classmethod
    def open(cls, store_file: Union[str, Path], **kwargs: Any) -> "MemoryStore":
        """Store for a file path with default configuration."""
        return cls(StoreConfig.for_file(Path(store_file)), **kwargs)

    @property
    def config(self) -> StoreConfig:
        return self._config

    @property
    def path(self) -> Path:
        return self._file.path

    @property
    def lock_path(self) -> Path:
        return self._lock_path

    @property
    def role(self) -> LockRole:
        return self._role

    def _write_lock(self) -> StoreLock:
        return StoreLock(
            self._lock_path,
            role=self._role,
            timeout=self._config.lock_timeout,
            stale_age=self._config.stale_lock_age,
        )

    def _now(self) -> str:
        return now_iso(self._clock)

    # -------------------------------------------------------------------------
    # Read Operations
    # -------------------------------------------------------------------------

    def load(self) -> list[Record]:
        """All records, tombstones included, in store order."""
        return self._file.load()

    def get(self, id: str) -> Optional[Record]:
        """Look up a record by id (tombstones included)."""
        for record in self._file.load():
            if record.id == id:
                return record
        return None

    def search(self, query: str, limit: Optional[int] = None) -> list[SearchHit]:
        """
        Rank active records against a whitespace-tokenized query.

        Args:
            query: Search terms
            limit: Maximum hits (default from config; at least 1)
        """
        limit = self._config.search_limit if limit is None else limit
        return search_records(self._file.load(), query, limit=limit, now=self._clock())

    def compress(
        self,
        query: str,
        budget: Optional[int] = None,
        limit: Optional[int] = None,
    ) -> CompressResult:
        """Render the hits for ``query`` into a budget-bounded markdown digest."""
        return compress_records(
            self._file.load(),
            query,
            budget=self._config.compress_budget if budget is None else budget,
            limit=self._config.compress_limit if limit is None else limit,
            now=self._clock(),
        )

    def stats(self) -> StoreStats:
        """Counts of all, active, and tombstoned records, plus tag frequencies."""
        records = self._file.load()
        stats = StoreStats(total=len(records))
        for record in records:
            if record.is_deleted:
                stats.deleted += 1
            for tag in record.tags:
                stats.tags[tag] = stats.tags.get(tag, 0) + 1
        stats.active = stats.total - stats.deleted
        return stats

    def export(self) -> list[dict]:
        """All records as dicts, in the store encoding."""
        return [r.to_dict() for r in self._file.load()]

    def export_json(self) -> str:
        """All records as JSON text; valid input for import_records()."""
        return dump_records(self._file.load())

    # -------------------------------------------------------------------------
    # Write Operations
    # -------------------------------------------------------------------------

    def add(self, text: str, tags: Optional[Iterable[str]] = None) -> Record:
        """
        Store a new memory.

        Keywords are extracted from the text; tags are lowercased, trimmed,
        and de-duplicated.

        Raises:
            InvalidInput: if text is empty after trimming
            LockTimeout: if the store lock is busy
        """
        text = (text or "").strip()
        if not text:
            raise InvalidInput("Cannot add an empty memory.")

        if isinstance(tags, str):
            tags = split_tag_string(tags)

        now = self._now()
        record = Record(
            id=make_id(self._clock),
            text=text,
            tags=normalize_tags(tags),
            keywords=extract_keywords(text),
            created_at=now,
            updated_at=now,
        )

        with self._write_lock():
            records = self._file.load()
            records.append(record)
            self._file.store(records)

        logger.info("add %s tags=%s", record.id, ",".join(record.tags))
        return record

    def soft_delete(self, id: str) -> bool:
        """
        Mark an active record deleted.

        Returns:
            True if an active record was tombstoned, False if there was
            none (missing id or already deleted). Nothing is written then.
        """
        with self._write_lock():
            records = self._file.load()
            for i, record in enumerate(records):
                if record.id == id and not record.is_deleted:
                    records[i] = record.tombstoned(self._now())
                    break
            else:
                return False
            self._file.store(records)

        logger.info("delete %s", id)
        return True

    def purge(
        self,
        id: Optional[str] = None,
        tag: Optional[str] = None,
        text: Optional[str] = None,
    ) -> int:
        """
        Permanently remove records matching any given criterion.

        Applies to tombstones and active records alike. ``tag`` is matched
        after normalization; ``text`` is a case-sensitive substring.

        Returns:
            Number of records removed (0 when no criterion is given)
        """
        tag = normalize_tags([tag])[0] if tag and tag.strip() else None
        if not (id or tag or text):
            return 0

        def matches(record: Record) -> bool:
            if id and record.id == id:
                return True
            if tag and tag in record.tags:
                return True
            return bool(text) and text in record.text

        with self._write_lock():
            records = self._file.load()
            kept = [r for r in records if not matches(r)]
            purged = len(records) - len(kept)
            if purged:
                self._file.store(kept)

        if purged:
            logger.info("purge %d (id=%s tag=%s text=%r)", purged, id, tag, text)
        return purged

    def import_records(self, records: Union[str, list]) -> ImportResult:
        """
        Append records from an export (JSON text or list of dicts).

        Records whose id already exists (in the store or earlier in the
        batch) are skipped. Accepted records get fresh timestamps and
        keywords extracted from their text; incoming keywords are ignored. A record
        that fails validation is counted and reported, and the rest of the
        batch continues.

        Raises:
            ParseFailure: if JSON text cannot be decoded to an array
        """
        if isinstance(records, str):
            try:
                records = json.loads(records) if records.strip() else []
            except json.JSONDecodeError as e:
                raise ParseFailure(None, f"invalid JSON ({e})") from e
        if not isinstance(records, list):
            raise ParseFailure(None, f"expected a JSON array, got {type(records).__name__}")

        result = ImportResult()
        with self._write_lock():
            existing = self._file.load()
            seen = {r.id for r in existing}

            for i, item in enumerate(records):
                try:
                    record = self._validate_import(item)
                except ValueError as e:
                    result.failed += 1
                    result.errors.append(f"record {i}: {e}")
                    continue
                if record.id in seen:
                    result.skipped += 1
                    continue
                seen.add(record.id)
                existing.append(record)
                result.imported += 1

            if result.imported:
                self._file.store(existing)

        logger.info(
            "import imported=%d skipped=%d failed=%d",
            result.imported, result.skipped, result.failed,
        )
        return result

    def _validate_import(self, item: Any) -> Record:
        """Turn one incoming dict into a re-timestamped Record."""
        if not isinstance(item, dict):
            raise ValueError(f"expected an object, got {type(item).__name__}")

        text = item.get("text")
        if not isinstance(text, str) or not text.strip():
            raise ValueError("missing or empty 'text'")

        id = item.get("id")
        if id is None:
            id = make_id(self._clock)
        elif not isinstance(id, str) or not id.strip():
            raise ValueError("'id' must be a non-empty string")

        tags = item.get("tags", [])
        if tags is None:
            tags = []
        if not isinstance(tags, list) or not all(isinstance(t, str) for t in tags):
            raise ValueError("'tags' must be a list of strings")

        deleted_at = item.get("deleted_at", item.get("deletedAt"))
        if deleted_at is not None and not isinstance(deleted_at, str):
            raise ValueError("'deleted_at' must be a string or null")

        now = self._now()
        return Record(
            id=id,
            text=text.strip(),
            tags=normalize_tags(tags),
            keywords=extract_keywords(text),
            created_at=now,
            updated_at=now,
            deleted_at=deleted_at,
        )

    def close(self) -> None:
        """Detach the ops log handler, if this store installed one."""
        if self._ops_handler is not None:
            from .logging_config import remove_ops_log
            remove_ops_log(self._ops_handler)
            self._ops_handler = None

    def __enter__(self) -> "MemoryStore":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
