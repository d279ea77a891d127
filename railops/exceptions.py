"""
Error taxonomy for operations on trains, car orders and operating sessions.

Every rule violation raised by the services is an OperationsError subclass
carrying a human-readable message, an error type and the HTTP status the API
layer answers with.
"""
from enum import Enum
from typing import Any, Dict, Optional


class ErrorType(str, Enum):
    """Error type enumeration used in API error payloads."""

    NOT_FOUND = "not_found"
    INVALID_TRANSITION = "invalid_transition"
    BAD_REQUEST = "bad_request"
    VALIDATION = "validation"
    CONFLICT = "conflict"
    INTERNAL = "internal"


class OperationsError(Exception):
    """Base class for all operations errors."""

    error_type: ErrorType = ErrorType.INTERNAL
    status_code: int = 500

    def __init__(self, message: str, details: Optional[Any] = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> Dict[str, Any]:
        """Convert error to dictionary for API responses."""
        payload = {
            "success": False,
            "error": self.message,
            "type": self.error_type.value,
        }
        if self.details is not None:
            payload["details"] = self.details
        return payload


class NotFoundError(OperationsError):
    """Missing train, route, locomotive, session, order or car."""

    error_type = ErrorType.NOT_FOUND
    status_code = 404


class InvalidTransitionError(OperationsError):
    """Operation attempted against an entity in an incompatible status."""

    error_type = ErrorType.INVALID_TRANSITION
    status_code = 400


class BadRequestError(OperationsError):
    """Request cannot be served with the current data (integrity, rollback preconditions)."""

    error_type = ErrorType.BAD_REQUEST
    status_code = 400


class ValidationFailedError(BadRequestError):
    """Malformed input."""

    error_type = ErrorType.VALIDATION


class ConflictError(OperationsError):
    """Duplicate assignment, edit of a non-Planned train, or a concurrent writer won."""

    error_type = ErrorType.CONFLICT
    status_code = 409


class InternalError(OperationsError):
    """Unexpected persistence failure or corrupted snapshot."""

    error_type = ErrorType.INTERNAL
    status_code = 500
