from typing import Any, Dict, Optional

from fastapi import status


class ServiceError(Exception):
    """Base exception for service layer errors."""

    kind = "SERVICE"

    def __init__(
        self,
        message: str,
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        code: Optional[str] = None,
        retryable: bool = False,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.code = code or self.kind
        self.retryable = retryable

    def to_detail(self) -> Dict[str, Any]:
        return {
            "code": self.code,
            "kind": self.kind,
            "message": self.message,
            "retryable": self.retryable,
        }


class ValidationError(ServiceError):
    """Bad input shape. Rejected synchronously, never retried."""

    kind = "VALIDATION"

    def __init__(self, message: str, code: str = "VALIDATION_FAILED") -> None:
        super().__init__(message, status.HTTP_400_BAD_REQUEST, code)


class PreconditionError(ServiceError):
    """Calendar/configuration state does not allow the operation (targeted empty state in the UI)."""

    kind = "PRECONDITION"

    def __init__(self, message: str, code: str) -> None:
        super().__init__(message, status.HTTP_422_UNPROCESSABLE_ENTITY, code)


class NotFoundError(ServiceError):
    kind = "NOT_FOUND"

    def __init__(self, message: str, code: str = "NOT_FOUND") -> None:
        super().__init__(message, status.HTTP_404_NOT_FOUND, code)


class ConflictError(ServiceError):
    kind = "CONFLICT"

    def __init__(self, message: str, code: str = "CONFLICT") -> None:
        super().__init__(message, status.HTTP_409_CONFLICT, code)


class AuthorizationError(ServiceError):
    kind = "AUTHORIZATION"

    def __init__(self, message: str = "Insufficient permissions", code: str = "FORBIDDEN") -> None:
        super().__init__(message, status.HTTP_403_FORBIDDEN, code)


class LookupTimeoutError(ServiceError):
    kind = "TIMEOUT"

    def __init__(self, message: str) -> None:
        super().__init__(message, status.HTTP_503_SERVICE_UNAVAILABLE, "LOOKUP_TIMEOUT", retryable=True)


class StoreError(ServiceError):
    """The database failed one item of a multi-item call; reported in the summary, the rest continue."""

    kind = "STORE"

    def __init__(self, message: str) -> None:
        super().__init__(message, status.HTTP_503_SERVICE_UNAVAILABLE, "STORE_ERROR", retryable=True)


# Precondition codes
NO_ACTIVE_CYCLE = "NO_ACTIVE_CYCLE"
NO_ACTIVE_BIMESTER = "NO_ACTIVE_BIMESTER"
INVALID_CYCLE = "INVALID_CYCLE"
CYCLE_ARCHIVED = "CYCLE_ARCHIVED"
DATE_NOT_INSTRUCTIONAL = "DATE_NOT_INSTRUCTIONAL"
NO_STATUSES_CONFIGURED = "NO_STATUSES_CONFIGURED"
NO_ACTIVE_CONFIG = "NO_ACTIVE_CONFIG"
ENROLLMENT_INACTIVE = "ENROLLMENT_INACTIVE"
INVALID_TRANSITION = "INVALID_TRANSITION"
JUSTIFIED_STATUS_UNAVAILABLE = "JUSTIFIED_STATUS_UNAVAILABLE"

# Validation / conflict codes
NOTES_REQUIRED = "NOTES_REQUIRED"
CHANGE_REASON_REQUIRED = "CHANGE_REASON_REQUIRED"
REJECTION_REASON_REQUIRED = "REJECTION_REASON_REQUIRED"
TOO_MANY_ITEMS = "TOO_MANY_ITEMS"
ATTENDANCE_EXISTS = "ATTENDANCE_EXISTS"
STATUS_NOT_ALLOWED = "STATUS_NOT_ALLOWED"
FUTURE_DATE = "FUTURE_DATE"
