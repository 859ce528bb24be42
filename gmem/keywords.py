"""
Keyword extraction for the search index.

Keywords are computed once, when a record is created, and stored with it.
"""

import re
from collections import Counter

MAX_KEYWORDS = 10
MIN_KEYWORD_LENGTH = 3

_WORD_RE = re.compile(r"[a-z0-9]+")

# Common English words that add nothing to search relevance
STOP_WORDS = frozenset({
    "i", "me", "my", "we", "our", "you", "your", "he", "she", "it", "they", "them",
    "a", "an", "the", "this", "that", "these", "those",
    "is", "am", "are", "was", "were", "be", "been", "being",
    "have", "has", "had", "do", "does", "did", "will", "would", "could", "should",
    "can", "may", "might", "must", "shall",
    "and", "or", "but", "if", "then", "else", "when", "where", "why", "how",
    "all", "each", "every", "both", "few", "more", "most", "some", "any", "no",
    "not", "only", "own", "same", "so", "than", "too", "very",
    "just", "also", "now", "here", "there", "about", "after", "before",
    "to", "from", "up", "down", "in", "out", "on", "off", "over", "under",
    "with", "without", "for", "of", "at", "by", "as", "into", "through",
    "like", "want", "use", "using", "used", "prefer", "always", "never",
})


def tokenize(text: str) -> list[str]:
    """Lowercase alphanumeric runs of ``text``, in order of appearance."""
    return _WORD_RE.findall(text.lower())


def extract_keywords(text: str, limit: int = MAX_KEYWORDS) -> list[str]:
    """
    Extract up to ``limit`` keywords from text, most frequent first.

    Drops stopwords and tokens shorter than three characters. Words with
    equal frequency keep the order of their first occurrence in the text,
    so the result is deterministic for a given input.
    """
    words = [
        w for w in tokenize(text)
        if len(w) >= MIN_KEYWORD_LENGTH and w not in STOP_WORDS
    ]
    # Counter keeps first-insertion order; sorted() is stable
    ranked = sorted(Counter(words).items(), key=lambda kv: -kv[1])
    return [word for word, _ in ranked[:limit]]
