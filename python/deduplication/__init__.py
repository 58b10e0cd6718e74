"""
Duplicate-case detection engine

Searches existing cases for likely duplicates, scores and ranks them,
records the human decision in an immutable audit trail and reads that
trail back.
"""

from deduplication.errors import (
    InputValidationError,
    StoreError,
    CaseNotFoundError,
    ImmutableAuditError,
)
from deduplication.types import (
    SearchCriteria,
    CandidateRecord,
    MatchType,
    ScoredCandidate,
    CandidateSnapshot,
    SearchResult,
    DecisionType,
    Decision,
    AuditEntry,
    DuplicateCluster,
)
from deduplication.similarity import name_similarity, edit_distance
from deduplication.normalizer import normalize_criteria
from deduplication.retriever import (
    CandidatePrefilter,
    ContainmentPrefilter,
    TrigramPrefilter,
    CandidateRetriever,
)
from deduplication.scorer import MatchScorer
from deduplication.ranker import rank_candidates
from deduplication.recorder import DecisionRecorder
from deduplication.history import HistoryReader
from deduplication.service import (
    DeduplicationService,
    configure_deduplication_service,
    get_deduplication_service,
)

__all__ = [
    'InputValidationError',
    'StoreError',
    'CaseNotFoundError',
    'ImmutableAuditError',
    'SearchCriteria',
    'CandidateRecord',
    'MatchType',
    'ScoredCandidate',
    'CandidateSnapshot',
    'SearchResult',
    'DecisionType',
    'Decision',
    'AuditEntry',
    'DuplicateCluster',
    'name_similarity',
    'edit_distance',
    'normalize_criteria',
    'CandidatePrefilter',
    'ContainmentPrefilter',
    'TrigramPrefilter',
    'CandidateRetriever',
    'MatchScorer',
    'rank_candidates',
    'DecisionRecorder',
    'HistoryReader',
    'DeduplicationService',
    'configure_deduplication_service',
    'get_deduplication_service',
]
