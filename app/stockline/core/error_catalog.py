from dataclasses import dataclass
from fastapi import status


@dataclass(frozen=True)
class ErrorDefinition:
    code: str
    message: str
    status_code: int


class ErrorCatalog:
    INVALID_TOKEN = ErrorDefinition("INVALID_TOKEN", "Invalid token", status.HTTP_401_UNAUTHORIZED)
    INVALID_CREDENTIALS = ErrorDefinition(
        "INVALID_CREDENTIALS",
        "Invalid credentials",
        status.HTTP_401_UNAUTHORIZED,
    )
    USER_INACTIVE = ErrorDefinition(
        "USER_INACTIVE",
        "User is inactive",
        status.HTTP_403_FORBIDDEN,
    )
    PERMISSION_DENIED = ErrorDefinition(
        "PERMISSION_DENIED",
        "Permission denied",
        status.HTTP_403_FORBIDDEN,
    )
    NOT_FOUND = ErrorDefinition(
        "NOT_FOUND",
        "Resource not found",
        status.HTTP_404_NOT_FOUND,
    )
    INVALID_STATE = ErrorDefinition(
        "INVALID_STATE",
        "Operation not allowed in the current status",
        status.HTTP_409_CONFLICT,
    )
    LEDGER_CONSISTENCY_ERROR = ErrorDefinition(
        "LEDGER_CONSISTENCY_ERROR",
        "Ledger consistency violated",
        status.HTTP_500_INTERNAL_SERVER_ERROR,
    )
    DB_UNAVAILABLE = ErrorDefinition(
        "DB_UNAVAILABLE",
        "Database unavailable",
        status.HTTP_503_SERVICE_UNAVAILABLE,
    )
    LOCK_TIMEOUT = ErrorDefinition(
        "LOCK_TIMEOUT",
        "Lock wait timeout",
        status.HTTP_409_CONFLICT,
    )
    VALIDATION_ERROR = ErrorDefinition(
        "VALIDATION_ERROR",
        "Validation error",
        status.HTTP_422_UNPROCESSABLE_ENTITY,
    )
    INTERNAL_ERROR = ErrorDefinition(
        "INTERNAL_ERROR",
        "Internal server error",
        status.HTTP_500_INTERNAL_SERVER_ERROR,
    )
    IDEMPOTENCY_KEY_REUSED_WITH_DIFFERENT_PAYLOAD = ErrorDefinition(
        "IDEMPOTENCY_KEY_REUSED_WITH_DIFFERENT_PAYLOAD",
        "Idempotency key reused with different payload",
        status.HTTP_409_CONFLICT,
    )
    IDEMPOTENCY_REQUEST_IN_PROGRESS = ErrorDefinition(
        "IDEMPOTENCY_REQUEST_IN_PROGRESS",
        "Idempotency request already in progress",
        status.HTTP_409_CONFLICT,
    )
    IDEMPOTENCY_REPLAY = ErrorDefinition(
        "IDEMPOTENCY_REPLAY",
        "Idempotent replay",
        status.HTTP_200_OK,
    )


class AppError(Exception):
    def __init__(self, error: ErrorDefinition, details: object | None = None):
        self.error = error
        self.details = details
        super().__init__(error.message)


def _details(message: str, extra: dict) -> dict:
    details = {"message": message}
    details.update(extra)
    return details


class ValidationError(AppError):
    """Malformed input; rejected before any write."""

    def __init__(self, message: str, **extra):
        self.message = message
        super().__init__(ErrorCatalog.VALIDATION_ERROR, details=_details(message, extra))


class AuthorizationError(AppError):
    """Role or outlet-access check failed; rejected before any write."""

    def __init__(self, message: str, **extra):
        self.message = message
        super().__init__(ErrorCatalog.PERMISSION_DENIED, details=_details(message, extra))


class InvalidStateError(AppError):
    """The operation is not allowed from the record's current status.

    ``current_status`` is always reported so that clients can resynchronize.
    """

    def __init__(self, message: str, *, current_status: str, **extra):
        self.message = message
        self.current_status = current_status
        super().__init__(
            ErrorCatalog.INVALID_STATE,
            details=_details(message, {"current_status": current_status, **extra}),
        )


class ConsistencyError(AppError):
    """The ledger pair written for a transfer does not balance. Fatal, never retried."""

    def __init__(self, message: str, **extra):
        self.message = message
        super().__init__(ErrorCatalog.LEDGER_CONSISTENCY_ERROR, details=_details(message, extra))


class NotFoundError(AppError):
    def __init__(self, message: str, **extra):
        self.message = message
        super().__init__(ErrorCatalog.NOT_FOUND, details=_details(message, extra))
