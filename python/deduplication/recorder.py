"""
Decision recording

A decision is validated before any I/O, then written in one transaction:
one audit row with the criteria and candidates exactly as shown, plus the
deduplication flags on the case. Either both writes land or neither does.
"""

import logging
from typing import Optional
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from config_manager import InputValidationConfig
from database.connection import UnitOfWork
from database.models import CaseDeduplicationAudit, DecisionType
from database.repositories import AuditRepository, CaseRepository
from deduplication.errors import InputValidationError, StoreError
from deduplication.types import AuditEntry, CandidateSnapshot, Decision, SearchResult
from log_utils import summarize_criteria

logger = logging.getLogger(__name__)


def validate_decision(
    case_id: UUID,
    decision: Decision,
    validation: Optional[InputValidationConfig] = None
) -> Decision:
    """Check a decision and return the form that will be stored

    A target case on anything but USE_EXISTING is dropped.

    Raises:
        InputValidationError: RATIONALE_REQUIRED, RATIONALE_TOO_LONG,
            SELECTED_CASE_REQUIRED or SELF_REFERENCE
    """
    rationale = (decision.rationale or '').strip()
    if not rationale:
        raise InputValidationError(
            "A rationale is required for every deduplication decision",
            field="rationale",
            code="RATIONALE_REQUIRED",
            suggestion="Explain why this decision was taken"
        )

    if validation is not None and len(rationale) > validation.rationale_max_length:
        raise InputValidationError(
            f"Rationale too long ({len(rationale)} chars, maximum {validation.rationale_max_length})",
            field="rationale",
            code="RATIONALE_TOO_LONG",
            suggestion=f"Shorten the rationale to {validation.rationale_max_length} characters or less"
        )

    target = decision.selected_existing_case_id
    if decision.decision_type == DecisionType.USE_EXISTING:
        if target is None:
            raise InputValidationError(
                "USE_EXISTING requires the id of the existing case",
                field="selected_existing_case_id",
                code="SELECTED_CASE_REQUIRED",
                suggestion="Select the existing case to use"
            )
        if target == case_id:
            raise InputValidationError(
                "A case cannot be resolved as a duplicate of itself",
                field="selected_existing_case_id",
                code="SELF_REFERENCE"
            )
    else:
        target = None

    return Decision(decision.decision_type, rationale, target)


def to_audit_entry(row: CaseDeduplicationAudit, performed_by_name: Optional[str] = None) -> AuditEntry:
    """Map a stored audit row to the read-side value type."""
    return AuditEntry(
        id=row.id,
        case_id=row.case_id,
        search_criteria=dict(row.search_criteria or {}),
        candidates_shown=tuple(CandidateSnapshot.from_dict(c) for c in row.candidates_shown or ()),
        decision=DecisionType(row.decision),
        rationale=row.rationale,
        performed_by=row.performed_by,
        performed_at=row.performed_at,
        performed_by_name=performed_by_name,
        selected_existing_case_id=row.selected_existing_case_id
    )


class DecisionRecorder:
    """Persists deduplication decisions atomically"""

    def __init__(self, session_factory: sessionmaker, validation: Optional[InputValidationConfig] = None):
        self.session_factory = session_factory
        self.validation = validation

    def validate_decision(self, case_id: UUID, decision: Decision) -> Decision:
        return validate_decision(case_id, decision, self.validation)

    def record(
        self,
        case_id: UUID,
        decision: Decision,
        search_result: SearchResult,
        actor_id: UUID
    ) -> AuditEntry:
        """
        Record a decision for a case.

        Args:
            case_id: Case the decision applies to
            decision: Decision with rationale
            search_result: Result the user saw when deciding
            actor_id: Acting user

        Returns:
            The stored AuditEntry

        Raises:
            InputValidationError: If the decision is invalid (nothing written)
            CaseNotFoundError: If the case or the selected target is missing
            StoreError: If the transaction fails (rolled back)
        """
        decision = self.validate_decision(case_id, decision)
        summary = summarize_criteria(search_result.criteria.to_dict())

        try:
            with UnitOfWork(self.session_factory) as uow:
                cases = CaseRepository(uow.session)
                audit = AuditRepository(uow.session)

                case = cases.get_required(case_id)
                if decision.selected_existing_case_id is not None:
                    cases.get_required(decision.selected_existing_case_id, role="selected case")

                row = audit.append(
                    case_id=case.id,
                    search_criteria=search_result.criteria.to_dict(),
                    candidates_shown=[s.to_dict() for s in search_result.snapshots()],
                    decision=decision.decision_type,
                    rationale=decision.rationale,
                    performed_by=actor_id,
                    selected_existing_case_id=decision.selected_existing_case_id
                )
                cases.mark_deduplicated(case, decision.decision_type, decision.rationale)

                uow.commit()
                entry = to_audit_entry(row)
        except SQLAlchemyError as e:
            logger.error("Recording decision for case %s failed: %s", case_id, e)
            raise StoreError("record_decision", str(e), summary) from e

        logger.info(
            "Recorded %s for case %s (audit entry %s, %d candidates shown)",
            decision.decision_type.value, case_id, entry.id, search_result.total_matches
        )
        return entry
