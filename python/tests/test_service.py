"""
Tests for the deduplication service against an in-memory SQLite store.
"""

from unittest.mock import MagicMock

import pytest
from sqlalchemy.exc import OperationalError

import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent))

from config_manager import PerformanceConfig
from deduplication.errors import InputValidationError, StoreError
from deduplication.service import (
    DeduplicationService,
    configure_deduplication_service,
    get_deduplication_service,
    reset_deduplication_service,
)
from deduplication.types import MatchType


@pytest.fixture
def service(db_provider, config):
    return DeduplicationService(db_provider, config)


class TestSearch:
    """End-to-end search: normalize, retrieve, score, rank."""

    def test_national_id_scenario(self, service, make_case):
        match = make_case(applicant_name="Anil Kumar", national_id="ABCDE1234F")
        make_case(applicant_name="Someone Else", national_id="PQRST6789Z")

        result = service.search(national_id=" abcde1234f ")

        assert result.criteria.national_id == "ABCDE1234F"
        assert result.total_matches == 1
        candidate = result.candidates[0]
        assert candidate.record.id == match.id
        assert candidate.match_types == frozenset({MatchType.NATIONAL_ID})
        assert candidate.score == 100

    def test_surname_typo_found(self, service, make_case):
        match = make_case(applicant_name="Rohan Sharma")

        result = service.search(name="Rohan Sarma")

        assert result.total_matches == 1
        assert result.candidates[0].record.id == match.id
        assert result.candidates[0].score == 55

    def test_padded_stored_national_id_scores_full(self, service, make_case):
        match = make_case(applicant_name="Anil Kumar", national_id=" abcde1234f ")

        result = service.search(national_id="ABCDE1234F")

        assert [c.record.id for c in result.candidates] == [match.id]
        assert result.candidates[0].score == 100

    def test_name_scenario(self, service, make_case):
        make_case(applicant_name="Rohan Sharman")

        result = service.search(name="Rohan Sharma")

        assert result.total_matches == 1
        assert result.candidates[0].score == 55
        assert result.candidates[0].match_types == frozenset({MatchType.NAME})

    def test_containment_hit_below_threshold_dropped(self, service, make_case):
        make_case(applicant_name="Rohan")

        assert service.search(name="Rohan Sharma").total_matches == 0

    def test_dual_match_ranks_first(self, service, make_case):
        phone_only = make_case(applicant_name="Someone Else", applicant_phone="9999999999", minutes=30)
        both = make_case(applicant_name="Priya Naik", applicant_phone="9999999999", minutes=10)

        result = service.search(name="Priya Nair", phone="9999999999")

        assert [c.record.id for c in result.candidates] == [both.id, phone_only.id]
        assert [c.score for c in result.candidates] == [134, 80]

    def test_equal_scores_newest_first(self, service, make_case):
        older = make_case(applicant_name="A One", applicant_phone="9999999999", minutes=1)
        newer = make_case(applicant_name="B Two", applicant_phone="9999999999", minutes=2)

        result = service.search(phone="9999999999")

        assert [c.record.id for c in result.candidates] == [newer.id, older.id]

    def test_no_matches(self, service, make_case):
        make_case(applicant_name="Kavita Joshi", applicant_phone="1111111111")

        result = service.search(name="Rohan Sharma", phone="9999999999")

        assert result.total_matches == 0
        assert result.candidates == ()

    def test_concurrent_scoring_matches_sequential(self, db_provider, config, make_case):
        for i in range(8):
            make_case(applicant_name=f"Rohan Sharma {i}", minutes=i)
        sequential = DeduplicationService(db_provider, config).search(name="Rohan Sharma")

        config.performance = PerformanceConfig(concurrent_scoring=True, max_threads=4)
        threaded = DeduplicationService(db_provider, config).search(name="Rohan Sharma")

        assert threaded.candidates == sequential.candidates

    def test_prefilter_factory_used(self, db_provider, config, make_case):
        chosen = make_case(applicant_name="Rohan Sharma")
        prefilter = MagicMock()
        prefilter.candidate_ids.return_value = [chosen.id]
        factory = MagicMock(return_value=prefilter)

        result = DeduplicationService(db_provider, config, prefilter_factory=factory).search(name="Rohan Sharma")

        assert [c.record.id for c in result.candidates] == [chosen.id]
        factory.assert_called_once()


class TestEmptyAndInvalidSearch:

    def test_empty_search_never_touches_store(self, config):
        """Scenario D: no criteria gives an empty result with no store query."""
        provider = MagicMock()
        service = DeduplicationService(provider, config)

        result = service.search(name="  ", phone="", national_id=None)

        assert result.total_matches == 0
        assert result.criteria.is_empty()
        provider.session_scope.assert_not_called()
        provider.session_factory.assert_not_called()

    def test_malformed_input_rejected_before_store(self, config):
        provider = MagicMock()
        service = DeduplicationService(provider, config)

        with pytest.raises(InputValidationError):
            service.search(name="<script>")

        provider.session_scope.assert_not_called()


class TestStoreFailures:

    def test_search_store_failure_raises(self, config):
        failing_session = MagicMock()
        failing_session.execute.side_effect = OperationalError("SELECT", {}, Exception("connection refused"))
        provider = MagicMock()
        provider.session_scope.return_value.__enter__.return_value = failing_session
        provider.session_scope.return_value.__exit__.return_value = False

        service = DeduplicationService(provider, config)

        with pytest.raises(StoreError) as exc_info:
            service.search(national_id="ABCDE1234F")

        assert exc_info.value.retryable is True

    def test_session_open_failure_raises(self, config):
        provider = MagicMock()
        provider.session_scope.side_effect = OperationalError("connect", {}, Exception("no route"))

        with pytest.raises(StoreError):
            DeduplicationService(provider, config).search(phone="9999999999")


class TestDuplicateClusters:
    """Tests for listing existing duplicate groups."""

    def test_groups_by_national_id_then_phone(self, service, make_case, client_org):
        by_id = [
            make_case(applicant_name="Anil Kumar", national_id="ABCDE1234F", minutes=1, client=client_org),
            make_case(applicant_name="Anil K", national_id="abcde1234f", applicant_phone="9000000001", minutes=2),
            make_case(applicant_name="A Kumar", national_id="ABCDE1234F", minutes=3),
        ]
        by_phone = [
            make_case(applicant_name="Priya Nair", applicant_phone="9000000002", minutes=4),
            make_case(applicant_name="P Nair", applicant_phone="9000000002", minutes=5),
        ]
        make_case(applicant_name="Singleton", national_id="ZZZZZ0000Z", minutes=6)

        clusters, total = service.duplicate_clusters()

        assert total == 2
        assert [(c.group_key, c.case_count) for c in clusters] == [("ABCDE1234F", 3), ("9000000002", 2)]
        assert [r.id for r in clusters[0].cases] == [c.id for c in reversed(by_id)]
        assert [r.id for r in clusters[1].cases] == [c.id for c in reversed(by_phone)]
        assert clusters[0].cases[-1].client_name == "Acme Verification Services"

    def test_pagination(self, service, make_case):
        make_case(national_id="AAAAA1111A")
        make_case(national_id="AAAAA1111A")
        make_case(applicant_phone="9000000002")
        make_case(applicant_phone="9000000002")

        clusters, total = service.duplicate_clusters(page=2, limit=1)

        assert total == 2
        assert [c.group_key for c in clusters] == ["AAAAA1111A"]

    def test_page_past_end_is_empty(self, service, make_case):
        make_case(applicant_phone="9000000002")
        make_case(applicant_phone="9000000002")

        clusters, total = service.duplicate_clusters(page=5, limit=10)

        assert clusters == []
        assert total == 1

    @pytest.mark.parametrize("page,limit,code", [
        (0, 20, "INVALID_PAGE"),
        (1, 0, "INVALID_LIMIT"),
        (1, 101, "INVALID_LIMIT"),
    ])
    def test_pagination_validated(self, service, page, limit, code):
        with pytest.raises(InputValidationError) as exc_info:
            service.duplicate_clusters(page=page, limit=limit)
        assert exc_info.value.code == code


class TestServiceRegistry:

    def test_configure_and_reset(self, db_provider, config):
        try:
            service = configure_deduplication_service(db_provider, config)
            assert get_deduplication_service() is service
        finally:
            reset_deduplication_service()
