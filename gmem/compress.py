"""
Deterministic compression of relevant memories into a markdown block.

No summarization model: the digest is the ranked hits, one line each,
cut from the end until it fits the character budget.
"""

from datetime import datetime
from typing import Iterable, Optional

from .search import search_records
from .types import CompressResult, Record, SearchHit

DEFAULT_BUDGET = 2000
MIN_BUDGET = 200
DEFAULT_LIMIT = 25

HEADER_LINES = ("# Memory Context (auto)", "", "## Relevant memory")


def render_hit(hit: SearchHit) -> str:
    """One digest line: - (id) [tag, tag] text, with the text's whitespace collapsed."""
    record = hit.record
    tag_str = f" [{', '.join(record.tags)}]" if record.tags else ""
    text = " ".join(record.text.split())
    return f"- ({record.id}){tag_str} {text}"


def _render(lines: list[str]) -> str:
    return "\n".join(lines) + "\n"


def compress_records(
    records: Iterable[Record],
    query: str,
    budget: int = DEFAULT_BUDGET,
    limit: Optional[int] = None,
    now: Optional[datetime] = None,
) -> CompressResult:
    """
    Render the hits for ``query`` into at most ``budget`` characters.

    ``budget`` is raised to MIN_BUDGET if smaller. When the full rendering
    is too long, trailing hit lines are dropped one at a time; ``included``
    lists exactly the hits whose lines remain in ``markdown``.
    """
    budget = max(MIN_BUDGET, budget)
    limit = DEFAULT_LIMIT if limit is None else limit
    hits = search_records(records, query, limit=limit, now=now)

    hit_lines = [render_hit(h) for h in hits]
    kept = len(hit_lines)
    markdown = _render([*HEADER_LINES, *hit_lines])
    while kept > 0 and len(markdown) > budget:
        kept -= 1
        markdown = _render([*HEADER_LINES, *hit_lines[:kept]])

    return CompressResult(
        markdown=markdown,
        included=hits[:kept],
        budget=budget,
        used=len(markdown),
        query=query,
    )
