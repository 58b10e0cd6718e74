"""
Candidate retrieval from the case store

One bounded query per search: exact national ID (trimmed, case-folded),
exact phone, and a permissive name prefilter are OR-ed together, newest
cases first, capped.
The prefilter only narrows the set cheaply; precise name similarity is
computed later by the scorer.

Store errors raise StoreError. An empty list always means "nothing found",
never "the query failed".
"""

import logging
from typing import List, Optional, Protocol
from uuid import UUID

from sqlalchemy import select, func, or_, and_, literal, String
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from config_manager import RetrievalConfig
from database.models import Case, Client
from database.monitoring import query_timer
from deduplication.errors import StoreError
from deduplication.types import CandidateRecord, SearchCriteria
from log_utils import summarize_criteria

logger = logging.getLogger(__name__)


def to_candidate_record(case: Case, client_name: Optional[str] = None) -> CandidateRecord:
    """Project a case row into the read-only candidate shape."""
    return CandidateRecord(
        id=case.id,
        case_number=case.case_number,
        applicant_name=case.applicant_name,
        applicant_phone=case.applicant_phone,
        national_id=case.national_id,
        status=case.status,
        created_at=case.created_at,
        client_name=client_name
    )


# ============================================
# NAME PREFILTERS
# ============================================

class CandidatePrefilter(Protocol):
    """Coarse name filter evaluated by the store

    Implementations return the ids of at most `limit` cases whose names
    might be similar to `name`, newest first. False positives are fine;
    false negatives lose duplicates.
    """

    def candidate_ids(self, name: str, limit: int) -> List[UUID]:
        ...


# Words shorter than this are too common to narrow anything.
MIN_PREFILTER_WORD = 3


def _containment(name: str):
    """Case-insensitive substring containment in either direction."""
    name_in_case = Case.applicant_name.icontains(name, autoescape=True)
    case_in_name = and_(
        Case.applicant_name != '',
        literal(name, String).ilike(literal('%', String) + Case.applicant_name + literal('%', String))
    )
    return or_(name_in_case, case_in_name)


def _shared_word(name: str):
    """Some word of the search name appears in the stored name."""
    words = {word for word in name.split() if len(word) >= MIN_PREFILTER_WORD}
    return [Case.applicant_name.icontains(word, autoescape=True) for word in sorted(words)]


class ContainmentPrefilter:
    """Portable prefilter: containment, or any shared word of the name.

    A typo confined to one word of a multi-word name is still retrieved
    through the other words.
    """

    def __init__(self, session: Session):
        self.session = session

    def _condition(self, name: str):
        return or_(_containment(name), *_shared_word(name))

    def candidate_ids(self, name: str, limit: int) -> List[UUID]:
        query = (
            select(Case.id)
            .where(self._condition(name))
            .order_by(Case.created_at.desc(), Case.id)
            .limit(limit)
        )
        return list(self.session.execute(query).scalars().all())


class TrigramPrefilter(ContainmentPrefilter):
    """PostgreSQL pg_trgm similarity above a threshold, or the portable filter.

    Requires the pg_trgm extension (created by the initial migration).
    """

    def __init__(self, session: Session, threshold: float = 0.6):
        super().__init__(session)
        self.threshold = threshold

    def _condition(self, name: str):
        return or_(
            func.similarity(Case.applicant_name, name) > self.threshold,
            super()._condition(name)
        )


def build_prefilter(session: Session, retrieval: RetrievalConfig) -> CandidatePrefilter:
    """Pick the name prefilter for this session's database.

    "auto" resolves to pg_trgm on PostgreSQL and to the portable filter
    on every other dialect.
    """
    kind = retrieval.prefilter
    if kind == "auto":
        dialect = session.get_bind().dialect.name
        kind = "trigram" if dialect == "postgresql" else "containment"
        logger.debug("Prefilter auto-selected %s for %s", kind, dialect)
    if kind == "trigram":
        return TrigramPrefilter(session, retrieval.trigram_threshold)
    return ContainmentPrefilter(session)


# ============================================
# RETRIEVER
# ============================================

class CandidateRetriever:
    """Loads the capped candidate set for a normalized search"""

    def __init__(
        self,
        session: Session,
        retrieval: Optional[RetrievalConfig] = None,
        prefilter: Optional[CandidatePrefilter] = None
    ):
        self.session = session
        self.retrieval = retrieval or RetrievalConfig()
        self.prefilter = prefilter or build_prefilter(session, self.retrieval)

    def retrieve(self, criteria: SearchCriteria) -> List[CandidateRecord]:
        """
        Fetch candidates matching any of the criteria.

        Args:
            criteria: Normalized search criteria

        Returns:
            Up to candidate_cap records, most recently created first

        Raises:
            StoreError: If the store query fails
        """
        if criteria.is_empty():
            return []

        cap = self.retrieval.candidate_cap
        predicates = []
        if criteria.national_id:
            predicates.append(func.upper(func.trim(Case.national_id)) == criteria.national_id)
        if criteria.phone:
            predicates.append(Case.applicant_phone == criteria.phone)

        try:
            with query_timer("retrieve_candidates"):
                if criteria.name:
                    # Only the newest `cap` name hits can survive the final limit
                    name_ids = self.prefilter.candidate_ids(criteria.name, cap)
                    if name_ids:
                        predicates.append(Case.id.in_(name_ids))

                if not predicates:
                    return []

                query = (
                    select(Case, Client.name)
                    .outerjoin(Client, Case.client_id == Client.id)
                    .where(or_(*predicates))
                    .order_by(Case.created_at.desc(), Case.id)
                    .limit(cap)
                )
                rows = self.session.execute(query).all()
        except SQLAlchemyError as e:
            summary = summarize_criteria(criteria.to_dict())
            logger.error("Candidate retrieval failed for %s: %s", summary, e)
            raise StoreError("search", str(e), summary) from e

        candidates = [to_candidate_record(case, client_name) for case, client_name in rows]
        logger.debug("Retrieved %d candidates (cap %d)", len(candidates), cap)
        return candidates
