"""
Deduplication Service

Entry point used by the API layer and by other Python callers:

    service = DeduplicationService(db_provider, config)
    result = service.search(name="Rohan Sharma", phone="9876543210")
    entry = service.record_decision(case_id, decision, result, actor_id)
    entries = service.history(case_id)

Each call is request-scoped; the service holds configuration only.
"""

import logging
from contextlib import contextmanager
from typing import Callable, Dict, Generator, List, Optional, Tuple
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from config_manager import ConfigManager, get_config
from database.connection import DatabaseSessionProvider, get_db_provider
from database.repositories import CaseRepository
from deduplication.errors import InputValidationError, StoreError
from deduplication.history import HistoryReader
from deduplication.normalizer import normalize_criteria
from deduplication.ranker import rank_candidates
from deduplication.recorder import DecisionRecorder
from deduplication.retriever import CandidatePrefilter, CandidateRetriever, to_candidate_record
from deduplication.scorer import MatchScorer
from deduplication.types import AuditEntry, Decision, DuplicateCluster, SearchResult
from log_utils import summarize_criteria

logger = logging.getLogger(__name__)

MAX_CLUSTER_PAGE_SIZE = 100


class DeduplicationService:
    """
    Duplicate search, decision recording and audit history.

    The search is an advisory pre-check, not a uniqueness guarantee: two
    cases created concurrently for the same person can both see zero
    candidates. Preventing that belongs to constraints in the case store.
    """

    def __init__(
        self,
        db_provider: DatabaseSessionProvider,
        config: Optional[ConfigManager] = None,
        prefilter_factory: Optional[Callable[[Session], CandidatePrefilter]] = None
    ):
        """
        Args:
            db_provider: Source of sessions and units of work
            config: Configuration (global instance if not provided)
            prefilter_factory: Builds the name prefilter for a session;
                defaults to the one named in retrieval.prefilter
        """
        self.db_provider = db_provider
        self.config = config or get_config()
        self.prefilter_factory = prefilter_factory
        self.scorer = MatchScorer(self.config.matching, self.config.normalization)

    @contextmanager
    def _read_session(self, operation: str, summary: Dict[str, str]) -> Generator[Session, None, None]:
        try:
            with self.db_provider.session_scope() as session:
                yield session
        except SQLAlchemyError as e:
            logger.error("%s failed for %s: %s", operation, summary, e)
            raise StoreError(operation, str(e), summary) from e

    def _max_workers(self) -> Optional[int]:
        performance = self.config.performance
        if performance.concurrent_scoring and performance.max_threads > 1:
            return performance.max_threads
        return None

    def search(
        self,
        name: Optional[str] = None,
        phone: Optional[str] = None,
        national_id: Optional[str] = None
    ) -> SearchResult:
        """
        Find likely duplicates of a case about to be created.

        Args:
            name: Subject name
            phone: Subject phone number
            national_id: Subject government ID

        Returns:
            SearchResult with candidates ranked best first. Empty criteria
            give an empty result without touching the store.

        Raises:
            InputValidationError: If the input is malformed
            StoreError: If the store query fails
        """
        criteria = normalize_criteria(name, phone, national_id, self.config)
        summary = summarize_criteria(criteria.to_dict())

        if criteria.is_empty():
            logger.info("Duplicate search skipped: no criteria provided")
            return SearchResult(criteria=criteria)

        logger.info("Duplicate search started: %s", summary)

        with self._read_session("search", summary) as session:
            prefilter = self.prefilter_factory(session) if self.prefilter_factory else None
            retriever = CandidateRetriever(session, self.config.retrieval, prefilter)
            records = retriever.retrieve(criteria)

        scored = self.scorer.score_all(records, criteria, max_workers=self._max_workers())
        result = SearchResult(criteria=criteria, candidates=tuple(rank_candidates(scored)))

        logger.info(
            "Duplicate search finished: %d retrieved, %d matched",
            len(records), result.total_matches
        )
        return result

    def record_decision(
        self,
        case_id: UUID,
        decision: Decision,
        search_result: SearchResult,
        actor_id: UUID
    ) -> AuditEntry:
        """
        Record the decision taken on a search result.

        Raises:
            InputValidationError: If the decision is invalid (nothing written)
            CaseNotFoundError: If the case or the selected target is missing
            StoreError: If the transaction fails (nothing written)
        """
        logger.info("Recording %s for case %s by %s", decision.decision_type.value, case_id, actor_id)
        recorder = DecisionRecorder(self.db_provider.session_factory, self.config.input_validation)
        return recorder.record(case_id, decision, search_result, actor_id)

    def history(self, case_id: UUID) -> List[AuditEntry]:
        """
        Audit entries for a case, newest first.

        Raises:
            StoreError: If the query fails
        """
        with self._read_session("history", {'case_id': str(case_id)}) as session:
            entries = HistoryReader(session).history(case_id)
        logger.debug("Loaded %d history entries for case %s", len(entries), case_id)
        return entries

    def duplicate_clusters(self, page: int = 1, limit: int = 20) -> Tuple[List[DuplicateCluster], int]:
        """
        Groups of existing cases sharing a national ID or phone.

        Args:
            page: 1-based page number
            limit: Groups per page (1-100)

        Returns:
            Tuple of (clusters on this page, total cluster count)

        Raises:
            InputValidationError: If page or limit is out of range
            StoreError: If the query fails
        """
        if page < 1:
            raise InputValidationError("page must be at least 1", field="page", code="INVALID_PAGE")
        if not 1 <= limit <= MAX_CLUSTER_PAGE_SIZE:
            raise InputValidationError(
                f"limit must be between 1 and {MAX_CLUSTER_PAGE_SIZE}",
                field="limit",
                code="INVALID_LIMIT"
            )

        with self._read_session("duplicate_clusters", {'page': str(page), 'limit': str(limit)}) as session:
            groups, total = CaseRepository(session).duplicate_clusters(offset=(page - 1) * limit, limit=limit)
            clusters = [
                DuplicateCluster(
                    group_key=group['group_key'],
                    case_count=group['case_count'],
                    cases=tuple(to_candidate_record(case, client_name) for case, client_name in group['cases'])
                )
                for group in groups
            ]

        return clusters, total


# ============================================
# FASTAPI DEPENDENCY
# ============================================

_service: Optional[DeduplicationService] = None


def configure_deduplication_service(
    db_provider: Optional[DatabaseSessionProvider] = None,
    config: Optional[ConfigManager] = None
) -> DeduplicationService:
    """Create the process-wide service (call during application startup)."""
    global _service
    _service = DeduplicationService(db_provider or get_db_provider(), config)
    return _service


def get_deduplication_service() -> DeduplicationService:
    """FastAPI dependency returning the configured service."""
    if _service is None:
        return configure_deduplication_service()
    return _service


def reset_deduplication_service() -> None:
    """Forget the process-wide service (useful for testing)."""
    global _service
    _service = None
