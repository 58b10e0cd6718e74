"""
Pydantic request/response schemas for the Case Deduplication API

Transforms the engine's value types (deduplication/types.py) to Pydantic
models for API validation.
"""

from datetime import datetime
from typing import List, Optional, Dict, Any
from uuid import UUID

from pydantic import BaseModel, Field, model_validator

from deduplication.types import AuditEntry, CandidateRecord, CandidateSnapshot, ScoredCandidate


class SearchRequest(BaseModel):
    """Request schema for a duplicate search.

    All fields are optional; an empty request returns no candidates.
    """
    name: Optional[str] = Field(default=None, max_length=200, description="Applicant name")
    phone: Optional[str] = Field(default=None, max_length=30, description="Applicant phone number")
    national_id: Optional[str] = Field(
        default=None,
        max_length=50,
        alias="nationalId",
        description="Government ID (e.g. PAN)"
    )

    model_config = {"populate_by_name": True}


class CandidateResponse(BaseModel):
    """A ranked duplicate candidate."""
    id: str = Field(..., description="Case ID")
    case_number: str = Field(..., description="Human-facing case number")
    applicant_name: str
    applicant_phone: Optional[str] = None
    national_id: Optional[str] = None
    status: str
    created_at: Optional[str] = Field(default=None, description="Creation timestamp (ISO 8601)")
    client_name: Optional[str] = None
    score: int = Field(..., ge=0, description="Composite match score")
    match_types: List[str] = Field(..., min_length=1, description="NATIONAL_ID, PHONE and/or NAME")
    name_similarity: float = Field(default=0.0, ge=0.0, le=1.0)

    @classmethod
    def from_scored(cls, scored: ScoredCandidate) -> 'CandidateResponse':
        snapshot = CandidateSnapshot.from_scored(scored)
        return cls(id=snapshot.case_id, **_snapshot_fields(snapshot))

    @classmethod
    def from_snapshot(cls, snapshot: CandidateSnapshot) -> 'CandidateResponse':
        return cls(id=snapshot.case_id, **_snapshot_fields(snapshot))


def _snapshot_fields(snapshot: CandidateSnapshot) -> Dict[str, Any]:
    data = snapshot.to_dict()
    data.pop('case_id')
    return data


class SearchResponse(BaseModel):
    """Response schema for a duplicate search."""
    search_id: str = Field(..., description="Unique search identifier (UUID)")
    criteria: Dict[str, Optional[str]] = Field(..., description="Normalized criteria")
    total_matches: int = Field(..., ge=0)
    candidates: List[CandidateResponse] = Field(default_factory=list)
    processing_time_ms: int = Field(..., ge=0, description="Processing time in milliseconds")
    algorithm_version: str = Field(..., description="Algorithm version used")


class DecisionRequest(BaseModel):
    """Request schema for recording a deduplication decision.

    The candidates shown to the user are re-submitted so the audit records
    exactly what was on screen.
    """
    case_id: UUID = Field(..., alias="caseId")
    decision: str = Field(..., description="CREATE_NEW, USE_EXISTING or MERGE_CASES")
    rationale: str = Field(..., max_length=2000)
    selected_existing_case_id: Optional[UUID] = Field(default=None, alias="selectedExistingCaseId")
    criteria: SearchRequest = Field(default_factory=SearchRequest)
    candidates_shown: List[CandidateResponse] = Field(default_factory=list, alias="candidatesShown")

    model_config = {"populate_by_name": True}

    @model_validator(mode="after")
    def normalize_decision_value(self) -> 'DecisionRequest':
        self.decision = self.decision.strip().upper()
        return self


class AuditEntryResponse(BaseModel):
    """A stored deduplication audit entry."""
    id: int
    case_id: str
    decision: str
    rationale: str
    selected_existing_case_id: Optional[str] = None
    search_criteria: Dict[str, Any] = Field(default_factory=dict)
    candidates_shown: List[CandidateResponse] = Field(default_factory=list)
    performed_by: str
    performed_by_name: Optional[str] = None
    performed_at: datetime

    @classmethod
    def from_entry(cls, entry: AuditEntry) -> 'AuditEntryResponse':
        return cls(
            id=entry.id,
            case_id=str(entry.case_id),
            decision=entry.decision.value,
            rationale=entry.rationale,
            selected_existing_case_id=(
                str(entry.selected_existing_case_id) if entry.selected_existing_case_id else None
            ),
            search_criteria=entry.search_criteria,
            candidates_shown=[CandidateResponse.from_snapshot(s) for s in entry.candidates_shown],
            performed_by=str(entry.performed_by),
            performed_by_name=entry.performed_by_name,
            performed_at=entry.performed_at,
        )


class DecisionResponse(BaseModel):
    """Response schema for a recorded decision."""
    success: bool = True
    audit_entry: AuditEntryResponse


class HistoryResponse(BaseModel):
    """Deduplication history for a case, newest first."""
    case_id: str
    entries: List[AuditEntryResponse] = Field(default_factory=list)


class ClusterCase(BaseModel):
    """A case inside a duplicate cluster."""
    id: str
    case_number: str
    applicant_name: str
    applicant_phone: Optional[str] = None
    national_id: Optional[str] = None
    status: str
    created_at: Optional[datetime] = None
    client_name: Optional[str] = None

    @classmethod
    def from_record(cls, record: CandidateRecord) -> 'ClusterCase':
        return cls(
            id=str(record.id),
            case_number=record.case_number,
            applicant_name=record.applicant_name,
            applicant_phone=record.applicant_phone,
            national_id=record.national_id,
            status=record.status,
            created_at=record.created_at,
            client_name=record.client_name,
        )


class ClusterResponse(BaseModel):
    """Cases sharing a national ID or phone."""
    group_key: str
    case_count: int = Field(..., ge=2)
    cases: List[ClusterCase] = Field(default_factory=list)


class ClusterListResponse(BaseModel):
    """Paginated duplicate clusters."""
    clusters: List[ClusterResponse] = Field(default_factory=list)
    page: int = Field(..., ge=1)
    limit: int = Field(..., ge=1)
    total: int = Field(..., ge=0)
    total_pages: int = Field(..., ge=0)


class HealthResponse(BaseModel):
    """Response schema for health check endpoint."""
    status: str = Field(default="healthy", description="Service status")
    database: str = Field(..., description="Database connectivity: ok or unavailable")
    algorithm_version: str = Field(..., description="Algorithm version")
    uptime_seconds: Optional[int] = Field(default=None, description="Server uptime in seconds")
    query_metrics: Dict[str, Any] = Field(default_factory=dict, description="Query timing statistics")


class ErrorDetail(BaseModel):
    """Detailed error information."""
    code: str = Field(..., description="Error code for programmatic handling")
    message: str = Field(..., description="Human-readable error message")
    field: Optional[str] = Field(default=None, description="Field that caused error")
    suggestion: Optional[str] = Field(default=None, description="How to fix the error")
    retryable: Optional[bool] = Field(default=None, description="Whether the request may be retried")
    timestamp: str = Field(..., description="Error timestamp (ISO 8601)")


class ErrorResponse(BaseModel):
    """Standardized error response format."""
    error: ErrorDetail
