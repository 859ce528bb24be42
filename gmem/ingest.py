"""
Ingest markdown and plain-text files as memories.

A markdown file becomes one record whose text is the file name as a
heading followed by the file content. A plain-text file is split on its
`#` heading lines into one record per section. Re-ingesting an unchanged
file is a no-op.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, Optional

from .api import MemoryStore
from .errors import InvalidInput
from .types import Record

logger = logging.getLogger(__name__)

FILE_TAGS = ("markdown", "file")
TEMP_TAG = "temp"
MARKDOWN_SUFFIXES = frozenset({".md", ".markdown"})
TEXT_TAGS = ("txt", "import")
TEXT_SUFFIXES = frozenset({".txt"})


@dataclass
class IngestSummary:
    """Outcome of an ingest that can add several records."""
    added: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)


def file_memory_text(path: Path, content: str) -> str:
    return f"# {path.name}\n\n{content.strip()}"


def ingest_file(
    store: MemoryStore,
    path: Path,
    *,
    temporary: bool = False,
    extra_tags: Iterable[str] = (),
) -> Optional[Record]:
    """
    Add one file to the store.

    Returns:
        The new record, or None if an active record with the same text
        already exists.

    Raises:
        OSError: if the file cannot be read
        InvalidInput: if the file is empty
    """
    path = Path(path)
    content = path.read_text(encoding="utf-8")
    text = file_memory_text(path, content)
    if not content.strip():
        raise InvalidInput(f"File is empty: {path}")

    if any(r.text == text and not r.is_deleted for r in store.load()):
        logger.info("ingest %s: unchanged, skipped", path)
        return None

    tags = [*FILE_TAGS]
    if temporary:
        tags.append(TEMP_TAG)
    tags.extend(extra_tags)
    return store.add(text, tags)


def list_markdown_files(directory: Path) -> list[Path]:
    """Markdown files directly inside ``directory``, sorted by name.

    Skips symlinks, subdirectories, and hidden files.
    """
    files = []
    for entry in sorted(Path(directory).iterdir()):
        if entry.name.startswith("."):
            continue
        if entry.is_symlink() or not entry.is_file():
            continue
        if entry.suffix.lower() in MARKDOWN_SUFFIXES:
            files.append(entry)
    return files


def ingest_directory(
    store: MemoryStore,
    directory: Path,
    *,
    temporary: bool = False,
    extra_tags: Iterable[str] = (),
) -> IngestSummary:
    """Ingest every markdown file in a directory; one bad file does not stop the rest."""
    extra_tags = list(extra_tags)
    summary = IngestSummary()
    for path in list_markdown_files(directory):
        try:
            record = ingest_file(store, path, temporary=temporary, extra_tags=extra_tags)
        except (OSError, ValueError) as e:
            logger.warning("ingest %s failed: %s", path, e)
            summary.failed[str(path)] = str(e)
            continue
        if record is None:
            summary.skipped.append(str(path))
        else:
            summary.added.append(record.id)
    return summary


# -----------------------------------------------------------------------------
# Plain-text files, one memory per heading section
# -----------------------------------------------------------------------------

@dataclass
class TextSection:
    """Non-blank lines under one ``#`` heading. Level 0 is text before any heading."""
    title: str
    content: str
    level: int = 0


def parse_text_sections(content: str) -> list[TextSection]:
    """
    Split plain text on lines starting with ``#``.

    The number of leading ``#`` is the section level and the rest of the
    line is its title. Blank lines are dropped; a heading with no lines
    under it produces no section.
    """
    sections = []
    current = TextSection(title="", content="")
    lines: list[str] = []
    for line in content.splitlines():
        stripped = line.strip()
        if stripped.startswith("#"):
            if lines:
                current.content = "\n".join(lines)
                sections.append(current)
            level = len(stripped) - len(stripped.lstrip("#"))
            current = TextSection(title=stripped[level:].strip(), content="", level=level)
            lines = []
        elif stripped:
            lines.append(line)
    if lines:
        current.content = "\n".join(lines)
        sections.append(current)
    return sections


def section_memory_text(section: TextSection) -> str:
    if section.level == 0:
        return section.content
    return f"{section.title} - {section.content}"


def ingest_text_sections(
    store: MemoryStore,
    path: Path,
    *,
    temporary: bool = False,
    extra_tags: Iterable[str] = (),
) -> IngestSummary:
    """
    Add each heading section of a plain-text file as its own memory.

    Sections whose text matches an active record are skipped, so
    re-ingesting an unchanged file adds nothing.

    Raises:
        OSError: if the file cannot be read
        InvalidInput: if the file has no non-blank lines
    """
    path = Path(path)
    sections = parse_text_sections(path.read_text(encoding="utf-8"))
    if not sections:
        raise InvalidInput(f"File is empty: {path}")

    tags = [*TEXT_TAGS]
    if temporary:
        tags.append(TEMP_TAG)
    tags.extend(extra_tags)

    existing = {r.text for r in store.load() if not r.is_deleted}
    summary = IngestSummary()
    for section in sections:
        label = f"{path.name}: {section.title}" if section.title else path.name
        text = section_memory_text(section).strip()
        if text in existing:
            summary.skipped.append(label)
            continue
        record = store.add(text, tags)
        existing.add(record.text)
        summary.added.append(record.id)
    logger.info("ingest %s: %d sections added, %d skipped",
                path, len(summary.added), len(summary.skipped))
    return summary
