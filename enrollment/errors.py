from __future__ import annotations

from typing import Any, Dict, List, Optional


class EnrollmentError(Exception):
    """
    Base for errors that carry an API-stable code and HTTP status.

    The API layer renders these into the {success: false, error: {...}} envelope.
    """

    status_code: int = 500
    code: str = "INTERNAL_ERROR"

    def __init__(
        self,
        message: str,
        *,
        code: Optional[str] = None,
        details: Any = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if code:
            self.code = code
        self.details = details


class ValidationFailed(EnrollmentError):
    """Bad input shape or format. details is a list of {field, reason}."""

    status_code = 400
    code = "VALIDATION_ERROR"

    def __init__(self, errors: List[Dict[str, str]], message: str = "Validation failed") -> None:
        super().__init__(message, details=errors)
        self.errors = errors


class DuplicateIdentity(EnrollmentError):
    status_code = 409
    code = "IDENTITY_ALREADY_EXISTS"


class DuplicateReference(EnrollmentError):
    status_code = 409
    code = "REFERENCE_ALREADY_EXISTS"


class DuplicateAdmin(EnrollmentError):
    status_code = 409
    code = "USERNAME_ALREADY_EXISTS"


class NotFound(EnrollmentError):
    status_code = 404
    code = "NOT_FOUND"


class InvalidTransition(EnrollmentError):
    status_code = 409
    code = "INVALID_TRANSITION"


class StorageConflict(EnrollmentError):
    """Concurrent write detected by the database. The caller should retry."""

    status_code = 409
    code = "STORAGE_CONFLICT"


class IndexUnavailable(EnrollmentError):
    """
    Search index unreachable, timed out or rejected the write.
    Never surfaced to end users; the canonical write has already committed.
    """

    status_code = 503
    code = "INDEX_UNAVAILABLE"
