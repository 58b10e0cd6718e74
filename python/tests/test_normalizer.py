"""
Tests for search criteria normalization.
"""

import pytest

import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent))

from config_manager import NormalizationConfig
from deduplication.errors import InputValidationError
from deduplication.normalizer import normalize_criteria, normalize_phone
from deduplication.types import SearchCriteria

PAN_PATTERN = r'^[A-Z]{5}[0-9]{4}[A-Z]$'


class TestNormalizeCriteria:
    """Tests for the default normalization policy."""

    def test_national_id_trimmed_and_uppercased(self, config):
        criteria = normalize_criteria(national_id="  abcde1234f ", config=config)
        assert criteria.national_id == "ABCDE1234F"

    def test_phone_trimmed_only(self, config):
        criteria = normalize_criteria(phone="  +91 98765-43210 ", config=config)
        assert criteria.phone == "+91 98765-43210"

    def test_name_whitespace_collapsed_case_preserved(self, config):
        criteria = normalize_criteria(name="  Rohan \t  SHARMA  ", config=config)
        assert criteria.name == "Rohan SHARMA"

    def test_newlines_in_name_collapsed(self, config):
        criteria = normalize_criteria(name="Rohan\nSharma", config=config)
        assert criteria.name == "Rohan Sharma"

    def test_blank_fields_become_absent(self, config):
        criteria = normalize_criteria(name="   ", phone="", national_id=" \t ", config=config)
        assert criteria == SearchCriteria()
        assert criteria.is_empty()

    def test_fields_not_cross_populated(self, config):
        criteria = normalize_criteria(name="9876543210", config=config)
        assert criteria.name == "9876543210"
        assert criteria.phone is None
        assert criteria.national_id is None

    def test_no_input_is_empty(self, config):
        assert normalize_criteria(config=config).is_empty()


class TestPhonePolicy:
    """Tests for the configurable phone policy."""

    def test_digits_only(self):
        policy = NormalizationConfig(phone_digits_only=True)
        assert normalize_phone("+91 (987) 654-3210", policy) == "919876543210"

    def test_minimum_digits_enforced(self):
        policy = NormalizationConfig(phone_digits_only=True, phone_min_digits=10)
        with pytest.raises(InputValidationError) as exc_info:
            normalize_phone("98765-432", policy)
        assert exc_info.value.code == "INVALID_PHONE_FORMAT"
        assert exc_info.value.field == "phone"

    def test_minimum_not_enforced_for_stored_phones(self):
        policy = NormalizationConfig(phone_digits_only=True, phone_min_digits=10)
        assert normalize_phone("12345", policy, enforce_minimum=False) == "12345"

    def test_phone_without_digits_is_absent(self):
        policy = NormalizationConfig(phone_digits_only=True)
        assert normalize_phone("n/a", policy) is None

    def test_policy_applied_through_config(self, config):
        config.normalization = NormalizationConfig(phone_digits_only=True, phone_min_digits=10)
        criteria = normalize_criteria(phone="98765 43210", config=config)
        assert criteria.phone == "9876543210"


class TestNationalIdPattern:

    def test_matching_pan_accepted(self, config):
        config.normalization = NormalizationConfig(national_id_pattern=PAN_PATTERN)
        criteria = normalize_criteria(national_id="abcde1234f", config=config)
        assert criteria.national_id == "ABCDE1234F"

    def test_invalid_pan_rejected(self, config):
        config.normalization = NormalizationConfig(national_id_pattern=PAN_PATTERN)
        with pytest.raises(InputValidationError) as exc_info:
            normalize_criteria(national_id="ABCD1234F", config=config)
        assert exc_info.value.code == "INVALID_NATIONAL_ID_FORMAT"

    def test_no_pattern_accepts_anything(self, config):
        criteria = normalize_criteria(national_id="x-1", config=config)
        assert criteria.national_id == "X-1"


class TestMalformedNames:
    """Tests for name validation."""

    def test_blocked_characters(self, config):
        with pytest.raises(InputValidationError) as exc_info:
            normalize_criteria(name="Robert'); DROP TABLE cases;--", config=config)
        assert exc_info.value.code == "BLOCKED_CHARACTERS"

    def test_control_characters(self, config):
        with pytest.raises(InputValidationError) as exc_info:
            normalize_criteria(name="Rohan\x00Sharma", config=config)
        assert exc_info.value.code == "CONTROL_CHARACTER"

    def test_name_too_long(self, config):
        with pytest.raises(InputValidationError) as exc_info:
            normalize_criteria(name="A" * 201, config=config)
        assert exc_info.value.code == "NAME_TOO_LONG"

    def test_identifier_too_long(self, config):
        with pytest.raises(InputValidationError) as exc_info:
            normalize_criteria(national_id="A" * 51, config=config)
        assert exc_info.value.code == "NATIONAL_ID_TOO_LONG"

    def test_unicode_names_allowed(self, config):
        criteria = normalize_criteria(name="José  Müller", config=config)
        assert criteria.name == "José Müller"
