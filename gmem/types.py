"""
Data types for the memory store.

Timestamps are ISO-8601 strings rendered at a fixed civil-time offset
(UTC+08:00), so ids and display times are the same wherever the process
runs. This module is the single source of truth for timestamp formatting
and id generation.
"""

import secrets
from dataclasses import asdict, dataclass, field, replace
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Iterable, Optional


CLOCK_OFFSET = timezone(timedelta(hours=8))

ID_PREFIX = "m_"

# Hex characters in the random id suffix (4 bytes)
ID_SUFFIX_BYTES = 4

# Legacy camelCase keys accepted when reading a store or import file
_LEGACY_KEYS = {
    "createdAt": "created_at",
    "updatedAt": "updated_at",
    "deletedAt": "deleted_at",
}

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    """Current time as an aware UTC datetime (the default clock)."""
    return datetime.now(timezone.utc)


def format_timestamp(dt: datetime) -> str:
    """Render an aware datetime at the store offset with millisecond precision."""
    local = dt.astimezone(CLOCK_OFFSET)
    return local.isoformat(timespec="milliseconds")


def now_iso(clock: Optional[Clock] = None) -> str:
    """Current timestamp in canonical format: YYYY-MM-DDTHH:MM:SS.mmm+08:00."""
    return format_timestamp((clock or utc_now)())


def parse_timestamp(ts: str) -> datetime:
    """Parse a stored timestamp string to a timezone-aware datetime.

    Accepts a trailing 'Z'. Naive values are taken as UTC.
    """
    ts = ts.strip().replace("Z", "+00:00")
    dt = datetime.fromisoformat(ts)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def make_id(clock: Optional[Clock] = None) -> str:
    """Generate a sortable record id: m_YYYYMMDDTHHMMSSffffffZ_<hex>.

    The timestamp part sorts lexically by creation time. Uniqueness within
    one microsecond rests on the random suffix alone.
    """
    local = (clock or utc_now)().astimezone(CLOCK_OFFSET)
    stamp = local.strftime("%Y%m%dT%H%M%S%f")
    return f"{ID_PREFIX}{stamp}Z_{secrets.token_hex(ID_SUFFIX_BYTES)}"


def normalize_tags(tags: Optional[Iterable[str]]) -> list[str]:
    """Lowercase, trim, and de-duplicate tags, keeping first-seen order."""
    out: list[str] = []
    if not tags:
        return out
    for tag in tags:
        cleaned = str(tag).strip().lower()
        if cleaned and cleaned not in out:
            out.append(cleaned)
    return out


def split_tag_string(value: Optional[str]) -> list[str]:
    """Split a comma-separated tag string ("a, b,c") into raw tags."""
    if not value:
        return []
    return [t for t in (part.strip() for part in value.split(",")) if t]


@dataclass(frozen=True)
class Record:
    """
    A single stored memory.

    ``text`` and ``keywords`` are fixed at creation. Only the lifecycle
    timestamps change afterwards; a record with ``deleted_at`` set is a
    tombstone and stays one until purged.
    """
    id: str
    text: str
    tags: list[str] = field(default_factory=list)
    keywords: list[str] = field(default_factory=list)
    created_at: str = ""
    updated_at: str = ""
    deleted_at: Optional[str] = None

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None

    def tombstoned(self, when: str) -> "Record":
        """Return a copy marked deleted at ``when``."""
        return replace(self, deleted_at=when, updated_at=when)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Record":
        """Build a Record from its serialized form.

        Raises:
            ValueError: if a required field is missing or has the wrong type
        """
        if not isinstance(data, dict):
            raise ValueError(f"record must be an object, got {type(data).__name__}")
        d = {_LEGACY_KEYS.get(k, k): v for k, v in data.items()}
        for key in ("id", "text", "created_at", "updated_at"):
            if not isinstance(d.get(key), str):
                raise ValueError(f"record field {key!r} must be a string")
        for key in ("tags", "keywords"):
            value = d.get(key, [])
            if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
                raise ValueError(f"record field {key!r} must be a list of strings")
        deleted_at = d.get("deleted_at")
        if deleted_at is not None and not isinstance(deleted_at, str):
            raise ValueError("record field 'deleted_at' must be a string or null")
        return cls(
            id=d["id"],
            text=d["text"],
            tags=list(d.get("tags", [])),
            keywords=list(d.get("keywords", [])),
            created_at=d["created_at"],
            updated_at=d["updated_at"],
            deleted_at=deleted_at,
        )


@dataclass(frozen=True)
class SearchHit:
    """A record with its relevance score (present only in search results)."""
    record: Record
    score: float

    @property
    def id(self) -> str:
        return self.record.id

    def to_dict(self) -> dict[str, Any]:
        d = self.record.to_dict()
        d.pop("deleted_at", None)
        d["score"] = self.score
        return d

    def __str__(self) -> str:
        return f"{self.record.id} [{self.score:.1f}]: {self.record.text[:60]}"


@dataclass
class StoreStats:
    """Counts over the whole store, tombstones included."""
    total: int = 0
    active: int = 0
    deleted: int = 0
    tags: dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class CompressResult:
    """Budget-bounded markdown digest and the hits that made it in."""
    markdown: str
    included: list[SearchHit]
    budget: int
    used: int
    query: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "query": self.query,
            "markdown": self.markdown,
            "included": [h.to_dict() for h in self.included],
            "budget": self.budget,
            "used": self.used,
        }


@dataclass
class ImportResult:
    """Per-batch outcome of an import; failures never abort the batch."""
    imported: int = 0
    skipped: int = 0
    failed: int = 0
    errors: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)
