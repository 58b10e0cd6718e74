"""
Value types passed between the deduplication components

Live records (CandidateRecord, ScoredCandidate) are projections of the
case store at search time. CandidateSnapshot is the frozen copy that goes
into the audit trail; it holds JSON-ready primitives only and does not
change when the underlying case does.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Optional, Tuple
from uuid import UUID

from database.models import DecisionType
from deduplication.errors import InputValidationError


class MatchType(str, Enum):
    """Signal that contributed to a candidate's score"""
    NATIONAL_ID = "NATIONAL_ID"
    PHONE = "PHONE"
    NAME = "NAME"


@dataclass(frozen=True)
class SearchCriteria:
    """Normalized search input. Absent fields are None, never empty strings."""
    name: Optional[str] = None
    phone: Optional[str] = None
    national_id: Optional[str] = None

    def is_empty(self) -> bool:
        return not (self.name or self.phone or self.national_id)

    def to_dict(self) -> Dict[str, Optional[str]]:
        return {
            'name': self.name,
            'phone': self.phone,
            'national_id': self.national_id
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'SearchCriteria':
        return cls(
            name=data.get('name'),
            phone=data.get('phone'),
            national_id=data.get('national_id')
        )


@dataclass(frozen=True)
class CandidateRecord:
    """Read-only projection of an existing case"""
    id: UUID
    case_number: str
    applicant_name: str
    applicant_phone: Optional[str]
    national_id: Optional[str]
    status: str
    created_at: datetime
    client_name: Optional[str] = None


@dataclass(frozen=True)
class ScoredCandidate:
    """A candidate with at least one matching signal"""
    record: CandidateRecord
    match_types: FrozenSet[MatchType]
    score: int
    name_similarity: float = 0.0

    def __post_init__(self):
        if not self.match_types:
            raise ValueError("ScoredCandidate requires at least one match type")


@dataclass(frozen=True)
class CandidateSnapshot:
    """Immutable copy of a scored candidate as it was shown to the user"""
    case_id: str
    case_number: str
    applicant_name: str
    applicant_phone: Optional[str]
    national_id: Optional[str]
    status: str
    created_at: Optional[str]
    client_name: Optional[str]
    score: int
    match_types: Tuple[str, ...]
    name_similarity: float

    @classmethod
    def from_scored(cls, scored: ScoredCandidate) -> 'CandidateSnapshot':
        record = scored.record
        return cls(
            case_id=str(record.id),
            case_number=record.case_number,
            applicant_name=record.applicant_name,
            applicant_phone=record.applicant_phone,
            national_id=record.national_id,
            status=record.status,
            created_at=record.created_at.isoformat() if record.created_at else None,
            client_name=record.client_name,
            score=scored.score,
            match_types=tuple(sorted(m.value for m in scored.match_types)),
            name_similarity=round(scored.name_similarity, 4)
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'case_id': self.case_id,
            'case_number': self.case_number,
            'applicant_name': self.applicant_name,
            'applicant_phone': self.applicant_phone,
            'national_id': self.national_id,
            'status': self.status,
            'created_at': self.created_at,
            'client_name': self.client_name,
            'score': self.score,
            'match_types': list(self.match_types),
            'name_similarity': self.name_similarity
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'CandidateSnapshot':
        return cls(
            case_id=str(data['case_id']),
            case_number=data.get('case_number', ''),
            applicant_name=data.get('applicant_name', ''),
            applicant_phone=data.get('applicant_phone'),
            national_id=data.get('national_id'),
            status=data.get('status', ''),
            created_at=data.get('created_at'),
            client_name=data.get('client_name'),
            score=int(data.get('score', 0)),
            match_types=tuple(data.get('match_types', ())),
            name_similarity=float(data.get('name_similarity', 0.0))
        )


@dataclass
class SearchResult:
    """Ranked candidates for one search"""
    criteria: SearchCriteria
    candidates: Tuple[ScoredCandidate, ...] = ()

    @property
    def total_matches(self) -> int:
        return len(self.candidates)

    def snapshots(self) -> List[CandidateSnapshot]:
        return [CandidateSnapshot.from_scored(c) for c in self.candidates]


@dataclass(frozen=True)
class Decision:
    """Human decision taken after reviewing a search result

    decision_type accepts the enum or its string value. A target case is
    only meaningful for USE_EXISTING.
    """
    decision_type: DecisionType
    rationale: str
    selected_existing_case_id: Optional[UUID] = None

    def __post_init__(self):
        try:
            decision_type = DecisionType(self.decision_type)
        except ValueError:
            raise InputValidationError(
                f"Unknown decision type: {self.decision_type!r}",
                field="decision_type",
                code="INVALID_DECISION",
                suggestion="Use one of CREATE_NEW, USE_EXISTING, MERGE_CASES"
            )
        object.__setattr__(self, 'decision_type', decision_type)

        target = self.selected_existing_case_id
        if isinstance(target, str):
            try:
                object.__setattr__(self, 'selected_existing_case_id', UUID(target))
            except ValueError:
                raise InputValidationError(
                    f"Invalid case id: {target!r}",
                    field="selected_existing_case_id",
                    code="INVALID_CASE_ID"
                )


@dataclass(frozen=True)
class AuditEntry:
    """Stored deduplication audit record"""
    id: int
    case_id: UUID
    search_criteria: Dict[str, Any]
    candidates_shown: Tuple[CandidateSnapshot, ...]
    decision: DecisionType
    rationale: str
    performed_by: UUID
    performed_at: datetime
    performed_by_name: Optional[str] = None
    selected_existing_case_id: Optional[UUID] = None


@dataclass(frozen=True)
class DuplicateCluster:
    """Existing cases sharing a national ID or phone"""
    group_key: str
    case_count: int
    cases: Tuple[CandidateRecord, ...] = field(default_factory=tuple)
