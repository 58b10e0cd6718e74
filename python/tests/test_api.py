"""
API endpoint tests for the Case Deduplication API

Uses FastAPI's TestClient with the service dependency bound to an
in-memory SQLite store. Tests cover search, decisions, history, clusters,
health, error mapping and security.
"""

import uuid
from datetime import datetime, timezone
from unittest.mock import MagicMock, patch

import pytest
from fastapi.testclient import TestClient

import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent))

from api import server
from deduplication.errors import StoreError
from deduplication.service import (
    DeduplicationService,
    get_deduplication_service,
    reset_deduplication_service,
)


@pytest.fixture
def service(db_provider, config):
    return DeduplicationService(db_provider, config)


@pytest.fixture
def client(service, config):
    """Test client with the service and config dependencies overridden."""
    server.app.dependency_overrides[get_deduplication_service] = lambda: service
    server.app.dependency_overrides[server.get_config_instance] = lambda: config
    with patch.object(server, '_startup_time', datetime.now(timezone.utc)):
        yield TestClient(server.app)
    server.app.dependency_overrides.clear()


@pytest.fixture
def failing_client(config):
    """Test client whose service raises StoreError on every call."""
    failing = MagicMock()
    failing.config = config
    error = StoreError("search", "connection refused", {'name': 'Rohan'})
    failing.search.side_effect = error
    failing.record_decision.side_effect = error
    failing.history.side_effect = error
    failing.duplicate_clusters.side_effect = error

    server.app.dependency_overrides[get_deduplication_service] = lambda: failing
    server.app.dependency_overrides[server.get_config_instance] = lambda: config
    yield TestClient(server.app)
    server.app.dependency_overrides.clear()


def user_headers(actor) -> dict:
    return {"X-User-ID": str(actor.id)}


# ============================================
# SEARCH TESTS
# ============================================

class TestSearch:
    """Tests for POST /api/v1/deduplication/search."""

    def test_national_id_match(self, client, make_case):
        """A matching PAN returns one candidate scored 100."""
        case = make_case(applicant_name="Anil Kumar", national_id="ABCDE1234F")

        response = client.post("/api/v1/deduplication/search", json={"nationalId": "abcde1234f"})

        assert response.status_code == 200
        data = response.json()
        assert data["total_matches"] == 1
        assert data["criteria"]["national_id"] == "ABCDE1234F"
        candidate = data["candidates"][0]
        assert candidate["id"] == str(case.id)
        assert candidate["score"] == 100
        assert candidate["match_types"] == ["NATIONAL_ID"]
        assert "search_id" in data
        assert data["algorithm_version"] == "1.0.0"

    def test_ranked_best_first(self, client, make_case):
        """Phone plus name outranks phone only."""
        make_case(applicant_name="Someone Else", applicant_phone="9999999999", minutes=30)
        make_case(applicant_name="Priya Naik", applicant_phone="9999999999", minutes=10)

        response = client.post(
            "/api/v1/deduplication/search",
            json={"name": "Priya Nair", "phone": "9999999999"}
        )

        scores = [c["score"] for c in response.json()["candidates"]]
        assert scores == [134, 80]

    def test_empty_search_returns_nothing(self, client, make_case):
        """An empty request is not an error."""
        make_case()

        response = client.post("/api/v1/deduplication/search", json={})

        assert response.status_code == 200
        assert response.json()["total_matches"] == 0
        assert response.json()["candidates"] == []

    def test_blocked_characters_rejected(self, client):
        """Malformed input maps to 422 with the validation code."""
        response = client.post("/api/v1/deduplication/search", json={"name": "<script>alert(1)</script>"})

        assert response.status_code == 422
        error = response.json()["error"]
        assert error["code"] == "BLOCKED_CHARACTERS"
        assert error["field"] == "name"

    def test_name_too_long_rejected(self, client):
        response = client.post("/api/v1/deduplication/search", json={"name": "A" * 201})
        assert response.status_code == 422

    def test_unicode_names_accepted(self, client, make_case):
        make_case(applicant_name="José Müller")

        response = client.post("/api/v1/deduplication/search", json={"name": "jose muller"})

        assert response.status_code == 200

    def test_store_failure_is_retryable(self, failing_client):
        """Store errors are 503 with retryable set, never an empty result."""
        response = failing_client.post("/api/v1/deduplication/search", json={"name": "Rohan"})

        assert response.status_code == 503
        error = response.json()["error"]
        assert error["code"] == "STORE_UNAVAILABLE"
        assert error["retryable"] is True


# ============================================
# DECISION TESTS
# ============================================

class TestDecision:
    """Tests for POST /api/v1/deduplication/decision."""

    def test_record_decision(self, client, make_case, actor):
        """Candidates from the search response are stored as shown."""
        existing = make_case(national_id="ABCDE1234F")
        new_case = make_case(national_id="ABCDE1234F", minutes=5)
        search = client.post("/api/v1/deduplication/search", json={"nationalId": "ABCDE1234F"}).json()

        response = client.post(
            "/api/v1/deduplication/decision",
            headers=user_headers(actor),
            json={
                "caseId": str(new_case.id),
                "decision": "use_existing",
                "rationale": "Same PAN and phone",
                "selectedExistingCaseId": str(existing.id),
                "criteria": {"nationalId": "ABCDE1234F"},
                "candidatesShown": search["candidates"],
            }
        )

        assert response.status_code == 200
        entry = response.json()["audit_entry"]
        assert entry["decision"] == "USE_EXISTING"
        assert entry["case_id"] == str(new_case.id)
        assert entry["selected_existing_case_id"] == str(existing.id)
        assert entry["performed_by"] == str(actor.id)
        assert [c["id"] for c in entry["candidates_shown"]] == [c["id"] for c in search["candidates"]]

    def test_missing_user_is_unauthorized(self, client, make_case):
        new_case = make_case()

        response = client.post(
            "/api/v1/deduplication/decision",
            json={"caseId": str(new_case.id), "decision": "CREATE_NEW", "rationale": "ok"}
        )

        assert response.status_code == 401

    def test_invalid_user_id_is_unauthorized(self, client, make_case):
        new_case = make_case()

        response = client.post(
            "/api/v1/deduplication/decision",
            headers={"X-User-ID": "not-a-uuid"},
            json={"caseId": str(new_case.id), "decision": "CREATE_NEW", "rationale": "ok"}
        )

        assert response.status_code == 401

    def test_use_existing_without_target(self, client, make_case, actor):
        """USE_EXISTING without a target is rejected and writes nothing."""
        new_case = make_case()

        response = client.post(
            "/api/v1/deduplication/decision",
            headers=user_headers(actor),
            json={"caseId": str(new_case.id), "decision": "USE_EXISTING", "rationale": "dup"}
        )

        assert response.status_code == 422
        assert response.json()["error"]["code"] == "SELECTED_CASE_REQUIRED"

        history = client.get(f"/api/v1/cases/{new_case.id}/deduplication/history").json()
        assert history["entries"] == []

    def test_blank_rationale(self, client, make_case, actor):
        new_case = make_case()

        response = client.post(
            "/api/v1/deduplication/decision",
            headers=user_headers(actor),
            json={"caseId": str(new_case.id), "decision": "CREATE_NEW", "rationale": "   "}
        )

        assert response.status_code == 422
        assert response.json()["error"]["code"] == "RATIONALE_REQUIRED"

    def test_unknown_decision(self, client, make_case, actor):
        new_case = make_case()

        response = client.post(
            "/api/v1/deduplication/decision",
            headers=user_headers(actor),
            json={"caseId": str(new_case.id), "decision": "IGNORE", "rationale": "n/a"}
        )

        assert response.status_code == 422
        assert response.json()["error"]["code"] == "INVALID_DECISION"

    def test_unknown_case(self, client, actor):
        response = client.post(
            "/api/v1/deduplication/decision",
            headers=user_headers(actor),
            json={"caseId": str(uuid.uuid4()), "decision": "CREATE_NEW", "rationale": "n/a"}
        )

        assert response.status_code == 404
        assert response.json()["error"]["code"] == "CASE_NOT_FOUND"

    def test_invalid_candidate_rejected(self, client, make_case, actor):
        new_case = make_case()
        bad_candidate = {
            "id": "not-a-uuid",
            "case_number": "CASE-1",
            "applicant_name": "X",
            "status": "PENDING",
            "score": 60,
            "match_types": ["NAME"],
        }

        response = client.post(
            "/api/v1/deduplication/decision",
            headers=user_headers(actor),
            json={
                "caseId": str(new_case.id),
                "decision": "CREATE_NEW",
                "rationale": "checked",
                "candidatesShown": [bad_candidate],
            }
        )

        assert response.status_code == 422
        assert response.json()["error"]["code"] == "INVALID_CANDIDATE"


# ============================================
# HISTORY TESTS
# ============================================

class TestHistory:
    """Tests for GET /api/v1/cases/{case_id}/deduplication/history."""

    def test_history_newest_first(self, client, make_case, actor):
        new_case = make_case()
        for decision in ("CREATE_NEW", "MERGE_CASES"):
            client.post(
                "/api/v1/deduplication/decision",
                headers=user_headers(actor),
                json={"caseId": str(new_case.id), "decision": decision, "rationale": decision.lower()}
            )

        response = client.get(f"/api/v1/cases/{new_case.id}/deduplication/history")

        assert response.status_code == 200
        entries = response.json()["entries"]
        assert [e["decision"] for e in entries] == ["MERGE_CASES", "CREATE_NEW"]
        assert entries[0]["performed_by_name"] == "Priya Menon"

    def test_unchecked_case_empty(self, client):
        response = client.get(f"/api/v1/cases/{uuid.uuid4()}/deduplication/history")

        assert response.status_code == 200
        assert response.json()["entries"] == []

    def test_invalid_case_id(self, client):
        response = client.get("/api/v1/cases/not-a-uuid/deduplication/history")
        assert response.status_code == 422

    def test_store_failure(self, failing_client):
        response = failing_client.get(f"/api/v1/cases/{uuid.uuid4()}/deduplication/history")
        assert response.status_code == 503


# ============================================
# CLUSTER TESTS
# ============================================

class TestClusters:
    """Tests for GET /api/v1/deduplication/clusters."""

    def test_clusters_paginated(self, client, make_case):
        for _ in range(3):
            make_case(national_id="ABCDE1234F")
        for _ in range(2):
            make_case(applicant_phone="9000000002")

        response = client.get("/api/v1/deduplication/clusters", params={"page": 1, "limit": 1})

        assert response.status_code == 200
        data = response.json()
        assert data["total"] == 2
        assert data["total_pages"] == 2
        assert data["clusters"][0]["group_key"] == "ABCDE1234F"
        assert data["clusters"][0]["case_count"] == 3
        assert len(data["clusters"][0]["cases"]) == 3

    def test_no_clusters(self, client, make_case):
        make_case(national_id="ABCDE1234F")

        data = client.get("/api/v1/deduplication/clusters").json()

        assert data["clusters"] == []
        assert data["total_pages"] == 0

    @pytest.mark.parametrize("params", [{"page": 0}, {"limit": 0}, {"limit": 101}])
    def test_invalid_pagination(self, client, params):
        response = client.get("/api/v1/deduplication/clusters", params=params)
        assert response.status_code == 422


# ============================================
# HEALTH TESTS
# ============================================

class TestHealth:
    """Tests for GET /api/v1/health."""

    def test_healthy(self, client):
        provider = MagicMock()
        provider.health_check.return_value = True
        with patch.object(server, 'get_db_provider', return_value=provider):
            response = client.get("/api/v1/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["database"] == "ok"
        assert data["algorithm_version"] == "1.0.0"
        assert data["uptime_seconds"] is not None

    def test_degraded_when_database_down(self, client):
        provider = MagicMock()
        provider.health_check.side_effect = RuntimeError("connection refused")
        with patch.object(server, 'get_db_provider', return_value=provider):
            response = client.get("/api/v1/health")

        assert response.status_code == 200
        assert response.json()["status"] == "degraded"
        assert response.json()["database"] == "unavailable"


# ============================================
# LIFESPAN TESTS
# ============================================

class TestLifespan:
    """Startup wires the service to the store; shutdown releases it."""

    def test_startup_serves_and_shutdown_closes(self, db_provider, config, make_case):
        case = make_case(applicant_name="Anil Kumar", national_id="ABCDE1234F")

        with patch.object(server, 'get_config', return_value=config), \
                patch.object(server, 'configure_logging') as configure_logging, \
                patch.object(server, 'init_db', return_value=db_provider) as init_db, \
                patch.object(server, 'close_db') as close_db, \
                patch.object(server, '_config', None), \
                patch.object(server, '_startup_time', None):
            try:
                with TestClient(server.app) as test_client:
                    response = test_client.post(
                        "/api/v1/deduplication/search", json={"nationalId": "ABCDE1234F"}
                    )
                    assert server._startup_time is not None
                    close_db.assert_not_called()
            finally:
                reset_deduplication_service()

        assert response.status_code == 200
        assert response.json()["candidates"][0]["id"] == str(case.id)
        init_db.assert_called_once()
        configure_logging.assert_called_once()
        close_db.assert_called_once()


# ============================================
# SECURITY TESTS
# ============================================

class TestSecurity:
    """Tests for API key handling and headers."""

    def test_api_key_required_when_configured(self, client):
        with patch.object(server, 'API_KEY', 'secret-key'):
            missing = client.post("/api/v1/deduplication/search", json={"name": "Rohan"})
            wrong = client.post(
                "/api/v1/deduplication/search",
                json={"name": "Rohan"},
                headers={"X-API-Key": "wrong"}
            )
            ok = client.post(
                "/api/v1/deduplication/search",
                json={"name": "Rohan"},
                headers={"X-API-Key": "secret-key"}
            )

        assert missing.status_code == 401
        assert wrong.status_code == 403
        assert ok.status_code == 200

    def test_error_response_format(self, client):
        response = client.post("/api/v1/deduplication/search", json={"name": "a;b"})

        error = response.json()["error"]
        assert {"code", "message", "timestamp"} <= set(error)

    def test_request_id_header(self, client):
        response = client.get(f"/api/v1/cases/{uuid.uuid4()}/deduplication/history")
        assert "X-Request-ID" in response.headers


class TestDocumentation:

    def test_openapi_available(self, client):
        response = client.get("/api/openapi.json")
        assert response.status_code == 200
        assert "/api/v1/deduplication/search" in response.json()["paths"]
