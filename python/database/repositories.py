"""
Repository Pattern for Case Deduplication Database Operations

Provides clean data access layer with proper typing and error handling.
Implements the Repository pattern for separation of concerns.

Repositories never commit; the caller owns the transaction (see UnitOfWork).
"""

import logging
from typing import List, Optional, Dict, Any, Tuple
from uuid import UUID

from sqlalchemy import select, func, event
from sqlalchemy.orm import Session

from database.models import (
    Case,
    Client,
    User,
    CaseDeduplicationAudit,
    DecisionType,
    utcnow,
)

logger = logging.getLogger(__name__)


class RepositoryError(Exception):
    """Base exception for repository errors."""
    pass


class CaseNotFoundError(RepositoryError):
    """Raised when a referenced case does not exist."""

    def __init__(self, case_id: UUID, role: str = "case"):
        self.case_id = case_id
        self.role = role
        super().__init__(f"{role.capitalize()} not found: {case_id}")


class ImmutableAuditError(RepositoryError):
    """Raised when code tries to modify or delete an audit entry."""
    pass


@event.listens_for(CaseDeduplicationAudit, "before_update")
def _reject_audit_update(mapper, connection, target):
    raise ImmutableAuditError(f"Audit entry {target.id} is immutable and cannot be updated")


@event.listens_for(CaseDeduplicationAudit, "before_delete")
def _reject_audit_delete(mapper, connection, target):
    raise ImmutableAuditError(f"Audit entry {target.id} is immutable and cannot be deleted")


def duplicate_group_key():
    """SQL expression grouping cases that share an identifier.

    The trimmed, upper-cased national ID wins; cases without one fall back
    to the phone.
    Empty strings count as missing.
    """
    return func.coalesce(
        func.nullif(func.upper(func.trim(Case.national_id)), ''),
        func.nullif(Case.applicant_phone, '')
    )


# ============================================
# CASE REPOSITORY
# ============================================

class CaseRepository:
    """Repository for case reads and the deduplication status columns."""

    def __init__(self, session: Session):
        self.session = session

    def get_by_id(self, case_id: UUID) -> Optional[Case]:
        """
        Get case by ID.

        Args:
            case_id: UUID of the case

        Returns:
            Case or None
        """
        return self.session.get(Case, case_id)

    def get_required(self, case_id: UUID, role: str = "case") -> Case:
        """
        Get case by ID or fail.

        Raises:
            CaseNotFoundError: If the case does not exist
        """
        case = self.get_by_id(case_id)
        if case is None:
            raise CaseNotFoundError(case_id, role)
        return case

    def mark_deduplicated(self, case: Case, decision: DecisionType, rationale: str) -> Case:
        """
        Set the deduplication outcome columns on a case.

        Args:
            case: Case to flag
            decision: Decision taken
            rationale: Rationale text stored alongside the decision

        Returns:
            The flagged case
        """
        case.deduplication_checked = True
        case.deduplication_decision = DecisionType(decision).value
        case.deduplication_rationale = rationale
        case.updated_at = utcnow()
        self.session.flush()
        return case

    def duplicate_clusters(
        self,
        offset: int = 0,
        limit: int = 20
    ) -> Tuple[List[Dict[str, Any]], int]:
        """
        List groups of existing cases that share a national ID or phone.

        Groups are ordered by size (largest first), then by key.

        Args:
            offset: Pagination offset (in groups)
            limit: Maximum groups to return

        Returns:
            Tuple of (groups, total group count). Each group is a dict with
            'group_key', 'case_count' and 'cases' (list of (Case, client name)
            tuples, newest first).
        """
        group_key = duplicate_group_key()
        case_count = func.count(Case.id)

        grouped = (
            select(group_key.label("group_key"), case_count.label("case_count"))
            .where(group_key.is_not(None))
            .group_by(group_key)
            .having(case_count > 1)
        )

        total = self.session.execute(
            select(func.count()).select_from(grouped.subquery())
        ).scalar_one()

        page_rows = self.session.execute(
            grouped.order_by(case_count.desc(), group_key).offset(offset).limit(limit)
        ).all()

        if not page_rows:
            return [], total

        groups = {
            row.group_key: {'group_key': row.group_key, 'case_count': row.case_count, 'cases': []}
            for row in page_rows
        }

        case_rows = self.session.execute(
            select(Case, Client.name, group_key.label("group_key"))
            .outerjoin(Client, Case.client_id == Client.id)
            .where(group_key.in_(list(groups)))
            .order_by(Case.created_at.desc(), Case.id)
        ).all()

        for case, client_name, key in case_rows:
            groups[key]['cases'].append((case, client_name))

        return [groups[row.group_key] for row in page_rows], total


# ============================================
# DEDUPLICATION AUDIT REPOSITORY
# ============================================

class AuditRepository:
    """Repository for the append-only deduplication audit."""

    def __init__(self, session: Session):
        self.session = session

    def append(
        self,
        case_id: UUID,
        search_criteria: Dict[str, Any],
        candidates_shown: List[Dict[str, Any]],
        decision: DecisionType,
        rationale: str,
        performed_by: UUID,
        selected_existing_case_id: Optional[UUID] = None
    ) -> CaseDeduplicationAudit:
        """
        Insert an audit entry.

        Args:
            case_id: Case the decision applies to
            search_criteria: Normalized criteria as searched
            candidates_shown: Serialized candidates exactly as shown
            decision: Decision taken
            rationale: Non-empty rationale text
            performed_by: Acting user
            selected_existing_case_id: Target case for USE_EXISTING

        Returns:
            Created CaseDeduplicationAudit (flushed, id assigned)
        """
        entry = CaseDeduplicationAudit(
            case_id=case_id,
            search_criteria=search_criteria,
            candidates_shown=candidates_shown,
            decision=DecisionType(decision).value,
            rationale=rationale,
            performed_by=performed_by,
            selected_existing_case_id=selected_existing_case_id,
            performed_at=utcnow()
        )

        self.session.add(entry)
        self.session.flush()
        logger.debug("Appended deduplication audit entry %s for case %s", entry.id, case_id)
        return entry

    def history(self, case_id: UUID) -> List[Tuple[CaseDeduplicationAudit, Optional[str]]]:
        """
        Audit entries for a case with the actor's display name.

        Ordered newest first; entries with equal timestamps fall back to
        descending id. Actors missing from the user directory yield None.
        """
        query = (
            select(CaseDeduplicationAudit, User.name)
            .outerjoin(User, CaseDeduplicationAudit.performed_by == User.id)
            .where(CaseDeduplicationAudit.case_id == case_id)
            .order_by(CaseDeduplicationAudit.performed_at.desc(), CaseDeduplicationAudit.id.desc())
        )
        return [(entry, name) for entry, name in self.session.execute(query).all()]

    def count_for_case(self, case_id: UUID) -> int:
        return self.session.execute(
            select(func.count())
            .select_from(CaseDeduplicationAudit)
            .where(CaseDeduplicationAudit.case_id == case_id)
        ).scalar_one()
