"""Similarity measures used by the capability registry.

All measures return a value in [0.0, 1.0].
"""

from __future__ import annotations

import re
from collections import Counter
from collections.abc import Iterable

_WORD_RE = re.compile(r"\w+")


def _bigrams(text: str) -> Counter[str]:
    return Counter(text[i : i + 2] for i in range(len(text) - 1))


def string_similarity(a: str, b: str) -> float:
    """Sørensen–Dice coefficient over case-insensitive character bigrams."""
    a = a.lower()
    b = b.lower()
    if a == b:
        return 1.0 if a else 0.0
    if len(a) < 2 or len(b) < 2:
        return 0.0
    grams_a = _bigrams(a)
    grams_b = _bigrams(b)
    matches = sum((grams_a & grams_b).values())
    return 2.0 * matches / (len(a) + len(b) - 2)


def set_overlap(a: Iterable[object], b: Iterable[object]) -> float:
    """|A ∩ B| / min(|A|, |B|); 0 when either side is empty."""
    set_a = set(a)
    set_b = set(b)
    if not set_a or not set_b:
        return 0.0
    return len(set_a & set_b) / min(len(set_a), len(set_b))


def words(text: str) -> set[str]:
    return set(_WORD_RE.findall(text.lower()))


def word_overlap(a: str, b: str) -> float:
    """Overlap of the lowercase word sets of two texts."""
    return set_overlap(words(a), words(b))
