"""
Domain error taxonomy.

Services raise these; the application-level exception handler in
``assessly.main`` renders them into the ``{"error": {...}}`` envelope.
"""
from typing import Any, Dict, List, Optional


class AppError(Exception):
    """Base class for errors surfaced to API callers."""

    status_code = 500
    code = "INTERNAL_ERROR"
    type = "app_error"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        body = {"message": self.message, "type": self.type, "code": self.code}
        body.update(self.details)
        return body


class NotFound(AppError):
    status_code = 404
    code = "NOT_FOUND"
    type = "not_found"


class TestDisabled(AppError):
    status_code = 403
    code = "TEST_DISABLED"
    type = "forbidden"


class InvalidState(AppError):
    """The assessment is no longer accepting changes."""

    status_code = 409
    type = "invalid_state"

    def __init__(self, message: str, status: str):
        super().__init__(message, {"status": status})
        self.status = status


class AlreadyCompleted(InvalidState):
    code = "ASSESSMENT_COMPLETED"

    def __init__(self, message: str = "Assessment already completed"):
        super().__init__(message, "COMPLETED")


class Abandoned(InvalidState):
    code = "ASSESSMENT_ABANDONED"

    def __init__(self, message: str = "Assessment was abandoned"):
        super().__init__(message, "ABANDONED")


class Expired(InvalidState):
    code = "ASSESSMENT_EXPIRED"

    def __init__(self, message: str = "Assessment time limit exceeded"):
        super().__init__(message, "ABANDONED")


class IncompatibleVisibility(AppError):
    status_code = 409
    code = "INCOMPATIBLE_VISIBILITY"
    type = "conflict"

    def __init__(self, message: str, blockers: List[Dict[str, Any]]):
        super().__init__(message, {"blockers": blockers})
        self.blockers = blockers


class ValidationError(AppError):
    status_code = 400
    code = "VALIDATION_ERROR"
    type = "validation_error"

    def __init__(self, message: str, errors: Optional[List[str]] = None):
        super().__init__(message, {"errors": errors or [message]})
        self.errors = errors or [message]
