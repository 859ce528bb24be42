"""Tests for markdown file ingestion."""

import pytest

from gmem.errors import InvalidInput
from gmem.ingest import (
    TextSection, ingest_directory, ingest_file, ingest_text_sections, list_markdown_files,
    parse_text_sections, section_memory_text,
)


@pytest.fixture
def docs(tmp_path):
    d = tmp_path / "docs"
    d.mkdir()
    (d / "b.md").write_text("beta rollout notes")
    (d / "a.markdown").write_text("alpha notes")
    (d / ".hidden.md").write_text("hidden")
    (d / "readme.txt").write_text("not markdown")
    (d / "sub").mkdir()
    return d


class TestIngestFile:

    def test_text_and_tags(self, store, tmp_path):
        f = tmp_path / "deploy.md"
        f.write_text("\nrun the deploy script\n")
        r = ingest_file(store, f, temporary=True, extra_tags=["Ops"])
        assert r.text == "# deploy.md\n\nrun the deploy script"
        assert r.tags == ["markdown", "file", "temp", "ops"]

    def test_unchanged_file_skipped(self, store, tmp_path):
        f = tmp_path / "n.md"
        f.write_text("same")
        assert ingest_file(store, f) is not None
        assert ingest_file(store, f) is None
        assert store.stats().total == 1

    def test_deleted_copy_does_not_block(self, store, tmp_path):
        f = tmp_path / "n.md"
        f.write_text("same")
        first = ingest_file(store, f)
        store.soft_delete(first.id)
        assert ingest_file(store, f) is not None

    def test_empty_file(self, store, tmp_path):
        f = tmp_path / "empty.md"
        f.write_text("  \n")
        with pytest.raises(InvalidInput):
            ingest_file(store, f)


class TestIngestDirectory:

    def test_lists_visible_markdown_only(self, docs):
        assert [p.name for p in list_markdown_files(docs)] == ["a.markdown", "b.md"]

    def test_summary(self, store, docs):
        (docs / "c.md").write_text("")
        summary = ingest_directory(store, docs)
        assert len(summary.added) == 2
        assert summary.skipped == []
        assert list(summary.failed) == [str(docs / "c.md")]

        again = ingest_directory(store, docs)
        assert again.added == []
        assert len(again.skipped) == 2


NOTES_TXT = """\
Preamble line one
preamble line two

# Deploy rules
run the deploy script

   only after tests pass
## Empty heading
### Docker
container restart policy
"""


class TestParseTextSections:

    def test_splits_on_heading_lines(self):
        sections = parse_text_sections(NOTES_TXT)
        assert [(s.title, s.level) for s in sections] == [
            ("", 0), ("Deploy rules", 1), ("Docker", 3),
        ]
        assert sections[0].content == "Preamble line one\npreamble line two"
        assert sections[1].content == "run the deploy script\n   only after tests pass"

    def test_heading_without_content_dropped(self):
        assert parse_text_sections("# A\n\n# B\nbody\n") == [TextSection("B", "body", 1)]

    def test_blank_text_has_no_sections(self):
        assert parse_text_sections("\n  \n") == []
        assert parse_text_sections("# only a heading\n") == []

    def test_memory_text(self):
        assert section_memory_text(TextSection("", "plain", 0)) == "plain"
        assert section_memory_text(TextSection("Docker", "restart", 2)) == "Docker - restart"


class TestIngestTextSections:

    def test_one_record_per_section(self, store, tmp_path):
        f = tmp_path / "notes.txt"
        f.write_text(NOTES_TXT)
        summary = ingest_text_sections(store, f, temporary=True, extra_tags=["Ops"])
        assert len(summary.added) == 3
        texts = [store.get(id).text for id in summary.added]
        assert texts == [
            "Preamble line one\npreamble line two",
            "Deploy rules - run the deploy script\n   only after tests pass",
            "Docker - container restart policy",
        ]
        assert store.get(summary.added[1]).tags == ["txt", "import", "temp", "ops"]

    def test_unchanged_sections_skipped(self, store, tmp_path):
        f = tmp_path / "notes.txt"
        f.write_text(NOTES_TXT)
        ingest_text_sections(store, f)
        f.write_text(NOTES_TXT + "# New\nfresh section\n")
        again = ingest_text_sections(store, f)
        assert len(again.added) == 1
        assert again.skipped == ["notes.txt", "notes.txt: Deploy rules", "notes.txt: Docker"]
        assert store.stats().total == 4

    def test_empty_file(self, store, tmp_path):
        f = tmp_path / "empty.txt"
        f.write_text("# title only\n\n")
        with pytest.raises(InvalidInput):
            ingest_text_sections(store, f)
