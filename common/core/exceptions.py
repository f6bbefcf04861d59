from typing import Optional


class AppException(Exception):
    """Base application exception.

    Every user-visible failure carries a machine-readable ``reason`` so the
    presentation layer can render an actionable message.
    """

    status_code: int = 500
    default_reason: str = "internal_error"

    def __init__(self, message: str = "", reason: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.reason = reason or self.default_reason


class NotFoundError(AppException):
    """Resource not found exception."""

    status_code = 404
    default_reason = "not_found"


class ValidationError(AppException):
    """Validation error exception."""

    status_code = 422
    default_reason = "validation_failed"


class ConflictError(AppException):
    """Concurrent modification or uniqueness conflict. Callers retry after refetching."""

    status_code = 409
    default_reason = "version_conflict"
