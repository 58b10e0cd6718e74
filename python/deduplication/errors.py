"""
Error types raised by the deduplication engine

Validation errors are raised before any I/O. Store failures are wrapped in
StoreError and marked retryable; they are never turned into empty results.
Case lookups that fail raise CaseNotFoundError from the repository layer.
"""

from typing import Dict, Optional

from config_manager import ConfigurationError
from database.repositories import RepositoryError, CaseNotFoundError, ImmutableAuditError


class InputValidationError(ValueError):
    """Raised when input validation fails

    Attributes:
        field: The field that failed validation
        code: Error code for programmatic handling
        message: Human-readable error message
        suggestion: Optional suggestion for fixing the error
    """
    def __init__(self, message: str, field: str = "unknown", code: str = "VALIDATION_ERROR", suggestion: str = ""):
        self.field = field
        self.code = code
        self.suggestion = suggestion
        super().__init__(message)


class StoreError(Exception):
    """Raised when the record store fails during an engine operation

    Attributes:
        operation: Engine operation that failed (search, record_decision, ...)
        summary: Log-safe summary of the operation's input
        retryable: Always True; the caller may retry the whole operation
    """
    retryable = True

    def __init__(self, operation: str, message: str, summary: Optional[Dict[str, str]] = None):
        self.operation = operation
        self.summary = summary or {}
        super().__init__(f"{operation} failed: {message}")


__all__ = [
    'InputValidationError',
    'StoreError',
    'ConfigurationError',
    'RepositoryError',
    'CaseNotFoundError',
    'ImmutableAuditError',
]
