"""
Relevance scoring over an in-memory record set.

Per query token (query split on whitespace, lowercased):
- +5 per case-insensitive occurrence of the token in the text
- +8 if the token equals one of the record's tags
- +6 if the token equals one of the record's keywords

Plus a recency bonus once per record: 5 points when just updated,
falling linearly to 0 at 150 days.
"""

from datetime import datetime
from typing import Iterable, Optional

from .types import Record, SearchHit, parse_timestamp, utc_now

TEXT_WEIGHT = 5.0
TAG_WEIGHT = 8.0
KEYWORD_WEIGHT = 6.0

RECENCY_MAX = 5.0
RECENCY_DAYS_PER_POINT = 30.0

DEFAULT_LIMIT = 10

_SECONDS_PER_DAY = 86400.0


def _age_days(record: Record, now: datetime) -> float:
    try:
        updated = parse_timestamp(record.updated_at)
    except ValueError:
        try:
            updated = parse_timestamp(record.created_at)
        except ValueError:
            # No usable timestamp: treat as too old for any bonus
            return RECENCY_MAX * RECENCY_DAYS_PER_POINT
    return abs((now - updated).total_seconds()) / _SECONDS_PER_DAY


def recency_bonus(record: Record, now: Optional[datetime] = None) -> float:
    days = _age_days(record, now or utc_now())
    return max(0.0, RECENCY_MAX - min(RECENCY_MAX, days / RECENCY_DAYS_PER_POINT))


def score_record(record: Record, query: str, now: Optional[datetime] = None) -> float:
    """
    Relevance of ``record`` to ``query``. An empty query scores 0.

    Tombstones are scored like any other record; callers exclude them.
    """
    tokens = query.lower().split()
    if not tokens:
        return 0.0

    text = record.text.lower()
    tags = {t.lower() for t in record.tags}
    keywords = set(record.keywords)
    score = 0.0

    for token in tokens:
        score += text.count(token) * TEXT_WEIGHT
        if token in tags:
            score += TAG_WEIGHT
        if token in keywords:
            score += KEYWORD_WEIGHT

    return score + recency_bonus(record, now)


def search_records(
    records: Iterable[Record],
    query: str,
    limit: int = DEFAULT_LIMIT,
    now: Optional[datetime] = None,
) -> list[SearchHit]:
    """
    Rank active records against ``query``, best first.

    Tombstones and records scoring <= 0 are dropped. Equal scores keep the
    order of ``records`` (store insertion order). At least one hit slot is
    always allowed, even for limit <= 0.
    """
    now = now or utc_now()
    hits = []
    for record in records:
        if record.is_deleted:
            continue
        score = score_record(record, query, now)
        if score <= 0:
            continue
        hits.append(SearchHit(record=record, score=score))

    hits.sort(key=lambda h: -h.score)
    return hits[:max(1, limit)]
