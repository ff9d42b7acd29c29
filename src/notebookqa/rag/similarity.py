"""Vector and lexical similarity measures used for ranking and cache matching."""

from __future__ import annotations

import math
from collections.abc import Sequence


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Return dot(a, b) / (|a| * |b|).

    Vectors of different length, and zero vectors, score 0.0.
    """
    if len(a) != len(b) or not a:
        return 0.0
    dot = math.fsum(x * y for x, y in zip(a, b))
    norm_a = math.sqrt(math.fsum(x * x for x in a))
    norm_b = math.sqrt(math.fsum(y * y for y in b))
    if norm_a == 0.0 or norm_b == 0.0:
        return 0.0
    return dot / (norm_a * norm_b)


def significant_words(text: str) -> set[str]:
    """Lower-cased whitespace-separated words longer than three characters."""
    return {w for w in text.lower().split() if len(w) > 3}


def word_overlap(question: str, candidate: str) -> float:
    """Share of the question's significant words that also appear in *candidate*."""
    q_words = significant_words(question)
    c_words = significant_words(candidate)
    return len(q_words & c_words) / max(len(q_words), 1)
