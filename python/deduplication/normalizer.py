"""
Criteria normalization for duplicate searches

Raw user input is cleaned into SearchCriteria:
- national ID: trimmed and upper-cased
- phone: trimmed; optionally reduced to digits (configuration policy)
- name: trimmed, internal whitespace collapsed, case preserved

A field that is empty after trimming is absent. Fields are never filled
from one another.

SECURITY: Names are checked for blocked and control characters before
they reach the store or the logs.
"""

import logging
import re
import unicodedata
from typing import Optional

from config_manager import ConfigManager, InputValidationConfig, NormalizationConfig, get_config
from deduplication.errors import InputValidationError
from deduplication.types import SearchCriteria
from log_utils import sanitize_for_logging, mask_identifier

logger = logging.getLogger(__name__)

_WHITESPACE = re.compile(r'\s+')
_NON_DIGITS = re.compile(r'\D')


def _blank_to_none(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    return value or None


def normalize_name(
    name: Optional[str],
    validation: Optional[InputValidationConfig] = None
) -> Optional[str]:
    """Trim and collapse whitespace in a name, preserving case

    Raises:
        InputValidationError: If the name is too long or contains blocked
            or control characters
    """
    name = _blank_to_none(name)
    if name is None:
        return None

    # Whitespace control characters are collapsed below, the rest are rejected
    for char in name:
        if unicodedata.category(char) == 'Cc' and not char.isspace():
            logger.warning("SECURITY: Control character detected in name: %s", sanitize_for_logging(name))
            raise InputValidationError(
                f"Name contains invalid control character (code: {ord(char)})",
                field="name",
                code="CONTROL_CHARACTER",
                suggestion="Remove invisible or control characters from the name"
            )

    name = _WHITESPACE.sub(' ', name)

    if validation is None:
        return name

    if len(name) > validation.name_max_length:
        raise InputValidationError(
            f"Name too long ({len(name)} chars, maximum {validation.name_max_length})",
            field="name",
            code="NAME_TOO_LONG",
            suggestion=f"Shorten the name to {validation.name_max_length} characters or less"
        )

    found_blocked = [c for c in name if c in validation.blocked_characters]
    if found_blocked:
        logger.warning("SECURITY: Blocked characters detected in name input: %s", sanitize_for_logging(name))
        raise InputValidationError(
            f"Name contains blocked characters: {found_blocked}",
            field="name",
            code="BLOCKED_CHARACTERS",
            suggestion="Remove special characters like < > { } [ ] | \\ ; ` $"
        )

    return name


def normalize_phone(
    phone: Optional[str],
    policy: Optional[NormalizationConfig] = None,
    enforce_minimum: bool = True
) -> Optional[str]:
    """Trim a phone number and apply the digit policy

    With phone_digits_only every non-digit is removed. phone_min_digits
    is only enforced on the digit-only form, and only for search input;
    stored phones are compared with enforce_minimum=False.

    Raises:
        InputValidationError: If the digit-only phone is shorter than the minimum
    """
    phone = _blank_to_none(phone)
    if phone is None or policy is None or not policy.phone_digits_only:
        return phone

    digits = _NON_DIGITS.sub('', phone)
    if not digits:
        return None

    if enforce_minimum and len(digits) < policy.phone_min_digits:
        logger.info("Rejected short phone number: %s", mask_identifier(digits))
        raise InputValidationError(
            f"Phone number must contain at least {policy.phone_min_digits} digits",
            field="phone",
            code="INVALID_PHONE_FORMAT",
            suggestion="Provide the full phone number including area code"
        )

    return digits


def normalize_national_id(
    national_id: Optional[str],
    policy: Optional[NormalizationConfig] = None
) -> Optional[str]:
    """Trim and upper-case a national ID, then check the configured pattern

    Raises:
        InputValidationError: If a pattern is configured and the ID does not match
    """
    national_id = _blank_to_none(national_id)
    if national_id is None:
        return None

    national_id = national_id.upper()

    if policy is not None and policy.national_id_pattern:
        if not re.match(policy.national_id_pattern, national_id):
            logger.info("Rejected national ID with invalid format: %s", mask_identifier(national_id))
            raise InputValidationError(
                "National ID does not match the expected format",
                field="national_id",
                code="INVALID_NATIONAL_ID_FORMAT",
                suggestion=f"Expected format: {policy.national_id_pattern}"
            )

    return national_id


def normalize_criteria(
    name: Optional[str] = None,
    phone: Optional[str] = None,
    national_id: Optional[str] = None,
    config: Optional[ConfigManager] = None
) -> SearchCriteria:
    """Normalize raw search input

    Args:
        name: Raw subject name
        phone: Raw phone number
        national_id: Raw government ID
        config: Configuration manager (global instance if not provided)

    Returns:
        SearchCriteria with absent fields set to None

    Raises:
        InputValidationError: If a field is malformed under the configured policy
    """
    if config is None:
        config = get_config()

    iv_config = config.input_validation

    for field_name, value, max_length in (
        ('phone', phone, iv_config.phone_max_length),
        ('national_id', national_id, iv_config.national_id_max_length),
    ):
        if value is not None and len(value.strip()) > max_length:
            raise InputValidationError(
                f"{field_name} too long ({len(value.strip())} chars, maximum {max_length})",
                field=field_name,
                code=f"{field_name.upper()}_TOO_LONG",
                suggestion=f"Shorten to {max_length} characters or less"
            )

    return SearchCriteria(
        name=normalize_name(name, iv_config),
        phone=normalize_phone(phone, config.normalization),
        national_id=normalize_national_id(national_id, config.normalization)
    )
