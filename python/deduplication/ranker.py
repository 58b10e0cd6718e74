"""Deterministic ordering of scored candidates."""

from typing import Iterable, List

from deduplication.types import ScoredCandidate


def _rank_key(candidate: ScoredCandidate):
    record = candidate.record
    return (-candidate.score, -record.created_at.timestamp(), str(record.id))


def rank_candidates(scored: Iterable[ScoredCandidate]) -> List[ScoredCandidate]:
    """Order by score descending, then newest first, then id ascending.

    The id tie-break makes the order total, so equal inputs always rank
    the same way.
    """
    return sorted(scored, key=_rank_key)
