from __future__ import annotations

from typing import Sequence

from rapidfuzz import fuzz
from rapidfuzz.distance import Levenshtein, LCSseq


def keyword_similarity(keyword: str, token: str) -> float:
    """Per-token rating in [0, 1] used by the fuzzy keyword walk."""
    if not keyword or not token:
        return 0.0
    return float(fuzz.ratio(keyword, token)) / 100.0


def edit_similarity(a: str, b: str) -> float:
    """1 - Levenshtein distance / longer length."""
    if not a and not b:
        return 1.0
    return float(Levenshtein.normalized_similarity(a, b))


def token_lcs(a: Sequence[str], b: Sequence[str]) -> int:
    if not a or not b:
        return 0
    return int(LCSseq.similarity(list(a), list(b)))


def jaccard(a: Sequence[str], b: Sequence[str]) -> float:
    sa, sb = set(a), set(b)
    union = sa | sb
    if not union:
        return 0.0
    return len(sa & sb) / len(union)
