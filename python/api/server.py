"""
FastAPI Case Deduplication API Server

Provides REST API endpoints for duplicate search before case creation,
decision recording and the deduplication audit history.

Usage:
    uvicorn api.server:app --reload --port 8000
"""

import os
import time
import uuid
import math
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional, Tuple

from fastapi import FastAPI, HTTPException, Depends, Header, Query, Security
from fastapi.security import APIKeyHeader
from starlette.concurrency import run_in_threadpool

from api.models import (
    SearchRequest,
    SearchResponse,
    CandidateResponse,
    DecisionRequest,
    DecisionResponse,
    AuditEntryResponse,
    HistoryResponse,
    ClusterCase,
    ClusterResponse,
    ClusterListResponse,
    HealthResponse,
    ErrorResponse,
)
from api.middleware import (
    setup_cors,
    setup_exception_handlers,
    RequestLoggingMiddleware,
)
from config_manager import get_config, ConfigManager, ConfigurationError
from database.connection import init_db, close_db, get_db_provider
from database.monitoring import get_db_metrics
from deduplication.errors import InputValidationError
from deduplication.normalizer import normalize_criteria
from deduplication.service import (
    DeduplicationService,
    configure_deduplication_service,
    get_deduplication_service,
)
from deduplication.types import (
    CandidateRecord,
    Decision,
    MatchType,
    ScoredCandidate,
    SearchResult,
)
from log_utils import configure_logging

logger = logging.getLogger(__name__)

# Environment variables with defaults
API_HOST = os.getenv("API_HOST", "127.0.0.1")
API_PORT = int(os.getenv("API_PORT", "8000"))
CONFIG_PATH = os.getenv("CONFIG_PATH", "config.yaml")
API_KEY = os.getenv("API_KEY", "")  # Required for authenticated endpoints

# Global state
_config: Optional[ConfigManager] = None
_startup_time: Optional[datetime] = None

# API Key security scheme
api_key_header = APIKeyHeader(name="X-API-Key", auto_error=False)


async def verify_api_key(api_key: Optional[str] = Security(api_key_header)) -> str:
    """Verify API key for protected endpoints.

    If API_KEY environment variable is not set, authentication is disabled.
    """
    if not API_KEY:
        # API key not configured - allow all requests (development mode)
        return "dev-mode"

    if not api_key:
        raise HTTPException(
            status_code=401, detail="Missing API key. Provide X-API-Key header."
        )

    if api_key != API_KEY:
        raise HTTPException(status_code=403, detail="Invalid API key")

    return api_key


async def get_current_user_id(x_user_id: Optional[str] = Header(default=None)) -> uuid.UUID:
    """Acting user, set by the authenticating gateway in X-User-ID."""
    if not x_user_id:
        raise HTTPException(status_code=401, detail="User not authenticated")
    try:
        return uuid.UUID(x_user_id)
    except ValueError:
        raise HTTPException(status_code=401, detail="Invalid user identity")


def get_config_instance() -> ConfigManager:
    """Dependency to get the config instance."""
    global _config
    if _config is None:
        _config = get_config(CONFIG_PATH)
    return _config


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Load configuration, connect to the database and build the service."""
    global _config, _startup_time

    logger.info("Starting Case Deduplication API...")

    try:
        _config = get_config(CONFIG_PATH)
        configure_logging(
            level=_config.logging.level,
            log_format=_config.logging.format,
            log_file=_config.logging.file,
            console=_config.logging.console,
        )
        logger.info("Configuration loaded from %s", CONFIG_PATH)

        provider = await run_in_threadpool(init_db)
        configure_deduplication_service(provider, _config)

        _startup_time = datetime.now(timezone.utc)
        logger.info("API ready (algorithm %s)", _config.algorithm.version)

    except ConfigurationError as e:
        logger.error("Configuration error: %s", e)
        raise

    yield

    logger.info("Shutting down Case Deduplication API...")
    close_db()


# Create FastAPI application
app = FastAPI(
    title="Case Deduplication API",
    description="Duplicate search, decision recording and audit history for cases",
    version="1.0.0",
    docs_url="/api/docs",
    redoc_url="/api/redoc",
    openapi_url="/api/openapi.json",
    lifespan=lifespan,
)

# Setup middleware
setup_cors(app)
app.add_middleware(RequestLoggingMiddleware)
setup_exception_handlers(app)


def _parse_created_at(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value)
    except ValueError:
        raise InputValidationError(
            f"Invalid candidate timestamp: {value!r}",
            field="candidatesShown.created_at",
            code="INVALID_TIMESTAMP",
        )


def _to_scored(candidate: CandidateResponse) -> ScoredCandidate:
    """Rebuild a shown candidate from the client's copy of the search response."""
    try:
        record = CandidateRecord(
            id=uuid.UUID(candidate.id),
            case_number=candidate.case_number,
            applicant_name=candidate.applicant_name,
            applicant_phone=candidate.applicant_phone,
            national_id=candidate.national_id,
            status=candidate.status,
            created_at=_parse_created_at(candidate.created_at),
            client_name=candidate.client_name,
        )
        match_types = frozenset(MatchType(m) for m in candidate.match_types)
    except ValueError as e:
        raise InputValidationError(
            f"Invalid candidate in candidatesShown: {e}",
            field="candidatesShown",
            code="INVALID_CANDIDATE",
        )
    return ScoredCandidate(
        record=record,
        match_types=match_types,
        score=candidate.score,
        name_similarity=candidate.name_similarity,
    )


@app.post(
    "/api/v1/deduplication/search",
    response_model=SearchResponse,
    responses={
        200: {"model": SearchResponse, "description": "Search completed"},
        401: {"model": ErrorResponse, "description": "Missing API key"},
        403: {"model": ErrorResponse, "description": "Invalid API key"},
        422: {"model": ErrorResponse, "description": "Validation error"},
        503: {"model": ErrorResponse, "description": "Case store unavailable (retryable)"},
    },
    summary="Search for duplicate cases",
    description="Find existing cases matching a name, phone and/or national ID",
)
def search_duplicates(
    request: SearchRequest,
    service: DeduplicationService = Depends(get_deduplication_service),
    config: ConfigManager = Depends(get_config_instance),
    api_key: str = Depends(verify_api_key),
):
    """Search existing cases for likely duplicates, best match first."""
    start_time = time.time()

    result = service.search(
        name=request.name,
        phone=request.phone,
        national_id=request.national_id,
    )

    processing_time_ms = int((time.time() - start_time) * 1000)

    return SearchResponse(
        search_id=str(uuid.uuid4()),
        criteria=result.criteria.to_dict(),
        total_matches=result.total_matches,
        candidates=[CandidateResponse.from_scored(c) for c in result.candidates],
        processing_time_ms=processing_time_ms,
        algorithm_version=config.algorithm.version,
    )


@app.post(
    "/api/v1/deduplication/decision",
    response_model=DecisionResponse,
    responses={
        200: {"model": DecisionResponse, "description": "Decision recorded"},
        401: {"model": ErrorResponse, "description": "Missing API key or user"},
        403: {"model": ErrorResponse, "description": "Invalid API key"},
        404: {"model": ErrorResponse, "description": "Case not found"},
        422: {"model": ErrorResponse, "description": "Validation error"},
        503: {"model": ErrorResponse, "description": "Case store unavailable (retryable)"},
    },
    summary="Record a deduplication decision",
    description="Store the decision and the candidates shown in the audit trail",
)
def record_decision(
    request: DecisionRequest,
    user_id: uuid.UUID = Depends(get_current_user_id),
    service: DeduplicationService = Depends(get_deduplication_service),
    api_key: str = Depends(verify_api_key),
):
    """Record the decision taken for a case after a duplicate search."""
    decision = Decision(
        decision_type=request.decision,
        rationale=request.rationale,
        selected_existing_case_id=request.selected_existing_case_id,
    )
    criteria = normalize_criteria(
        name=request.criteria.name,
        phone=request.criteria.phone,
        national_id=request.criteria.national_id,
        config=service.config,
    )
    search_result = SearchResult(
        criteria=criteria,
        candidates=tuple(_to_scored(c) for c in request.candidates_shown),
    )

    entry = service.record_decision(request.case_id, decision, search_result, user_id)

    return DecisionResponse(success=True, audit_entry=AuditEntryResponse.from_entry(entry))


@app.get(
    "/api/v1/cases/{case_id}/deduplication/history",
    response_model=HistoryResponse,
    responses={
        401: {"model": ErrorResponse, "description": "Missing API key"},
        503: {"model": ErrorResponse, "description": "Case store unavailable (retryable)"},
    },
    summary="Deduplication history for a case",
)
def case_history(
    case_id: uuid.UUID,
    service: DeduplicationService = Depends(get_deduplication_service),
    api_key: str = Depends(verify_api_key),
):
    """Audit entries for a case, newest first. Empty for unchecked cases."""
    entries = service.history(case_id)
    return HistoryResponse(
        case_id=str(case_id),
        entries=[AuditEntryResponse.from_entry(e) for e in entries],
    )


def _pagination(
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
) -> Tuple[int, int]:
    return page, limit


@app.get(
    "/api/v1/deduplication/clusters",
    response_model=ClusterListResponse,
    responses={
        401: {"model": ErrorResponse, "description": "Missing API key"},
        503: {"model": ErrorResponse, "description": "Case store unavailable (retryable)"},
    },
    summary="Existing duplicate clusters",
    description="Groups of existing cases sharing a national ID or phone, largest first",
)
def duplicate_clusters(
    pagination: Tuple[int, int] = Depends(_pagination),
    service: DeduplicationService = Depends(get_deduplication_service),
    api_key: str = Depends(verify_api_key),
):
    """List duplicate clusters for admin review."""
    page, limit = pagination
    clusters, total = service.duplicate_clusters(page=page, limit=limit)

    return ClusterListResponse(
        clusters=[
            ClusterResponse(
                group_key=c.group_key,
                case_count=c.case_count,
                cases=[ClusterCase.from_record(r) for r in c.cases],
            )
            for c in clusters
        ],
        page=page,
        limit=limit,
        total=total,
        total_pages=math.ceil(total / limit),
    )


@app.get(
    "/api/v1/health",
    response_model=HealthResponse,
    summary="Health check",
    description="Check service health and database connectivity",
)
def health_check(config: ConfigManager = Depends(get_config_instance)):
    """Return health status. Always returns HTTP 200."""
    try:
        database_ok = get_db_provider().health_check()
    except Exception as e:
        logger.error("Health check could not reach the database: %s", e)
        database_ok = False

    uptime_seconds = None
    if _startup_time:
        uptime_seconds = int((datetime.now(timezone.utc) - _startup_time).total_seconds())

    return HealthResponse(
        status="healthy" if database_ok else "degraded",
        database="ok" if database_ok else "unavailable",
        algorithm_version=config.algorithm.version,
        uptime_seconds=uptime_seconds,
        query_metrics=get_db_metrics(),
    )


# Root redirect to docs
@app.get("/", include_in_schema=False)
async def root():
    """Redirect root to API documentation."""
    from fastapi.responses import RedirectResponse

    return RedirectResponse(url="/api/docs")


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host=API_HOST, port=API_PORT)
