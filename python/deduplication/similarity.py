"""
Name similarity based on Levenshtein edit distance

similarity = 1 - distance / max(len(a), len(b)), computed on lower-cased,
trimmed, whitespace-collapsed strings. Identical strings (including two
empty ones) have similarity 1.0. The result is symmetric and lies in [0, 1].
"""

import re
from typing import Optional

from rapidfuzz.distance import Levenshtein

_WHITESPACE = re.compile(r'\s+')


def normalize_for_comparison(value: Optional[str]) -> str:
    """Lower-case, trim and collapse internal whitespace. None becomes ''."""
    if not value:
        return ''
    return _WHITESPACE.sub(' ', value.strip()).lower()


def edit_distance(a: str, b: str) -> int:
    """Unit-cost Levenshtein distance (insert, delete, substitute)."""
    return Levenshtein.distance(a, b)


def name_similarity(a: Optional[str], b: Optional[str]) -> float:
    """Similarity of two names in [0, 1]

    Args:
        a: First name (raw or normalized)
        b: Second name (raw or normalized)

    Returns:
        1.0 for identical names, otherwise 1 - distance / longer length
    """
    left = normalize_for_comparison(a)
    right = normalize_for_comparison(b)

    if left == right:
        return 1.0

    longest = max(len(left), len(right))
    return 1.0 - edit_distance(left, right) / longest
