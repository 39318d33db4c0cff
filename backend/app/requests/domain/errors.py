import enum
from datetime import datetime, timezone
from typing import Any, Dict, Mapping, Optional


class ErrorCode(str, enum.Enum):
    # Authentication
    AUTH_INVALID_CREDENTIALS = "AUTH_INVALID_CREDENTIALS"
    AUTH_SESSION_EXPIRED = "AUTH_SESSION_EXPIRED"
    AUTH_USER_NOT_FOUND = "AUTH_USER_NOT_FOUND"
    AUTH_EMAIL_NOT_CONFIRMED = "AUTH_EMAIL_NOT_CONFIRMED"
    AUTH_EMAIL_ALREADY_EXISTS = "AUTH_EMAIL_ALREADY_EXISTS"
    AUTH_WEAK_PASSWORD = "AUTH_WEAK_PASSWORD"
    AUTH_UNAUTHORIZED = "AUTH_UNAUTHORIZED"

    # Network
    NETWORK_OFFLINE = "NETWORK_OFFLINE"
    NETWORK_TIMEOUT = "NETWORK_TIMEOUT"
    NETWORK_CONNECTION_FAILED = "NETWORK_CONNECTION_FAILED"

    # Database
    DB_INSERT_FAILED = "DB_INSERT_FAILED"
    DB_UPDATE_FAILED = "DB_UPDATE_FAILED"
    DB_DELETE_FAILED = "DB_DELETE_FAILED"
    DB_FETCH_FAILED = "DB_FETCH_FAILED"
    DB_NOT_FOUND = "DB_NOT_FOUND"
    DB_CONSTRAINT_VIOLATION = "DB_CONSTRAINT_VIOLATION"
    DB_PERMISSION_DENIED = "DB_PERMISSION_DENIED"

    # Validation
    VALIDATION_FAILED = "VALIDATION_FAILED"
    VALIDATION_REQUIRED_FIELD = "VALIDATION_REQUIRED_FIELD"
    VALIDATION_INVALID_FORMAT = "VALIDATION_INVALID_FORMAT"

    # Generic
    UNKNOWN_ERROR = "UNKNOWN_ERROR"
    UNEXPECTED_ERROR = "UNEXPECTED_ERROR"
    OPERATION_CANCELLED = "OPERATION_CANCELLED"


class ErrorSeverity(str, enum.Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


DEFAULT_USER_MESSAGES: Dict[ErrorCode, str] = {
    ErrorCode.AUTH_INVALID_CREDENTIALS: "Invalid email or password. Please try again.",
    ErrorCode.AUTH_SESSION_EXPIRED: "Your session has expired. Please log in again.",
    ErrorCode.AUTH_USER_NOT_FOUND: "No account found with this email address.",
    ErrorCode.AUTH_EMAIL_NOT_CONFIRMED: "Please verify your email address before logging in.",
    ErrorCode.AUTH_EMAIL_ALREADY_EXISTS: "An account with this email already exists.",
    ErrorCode.AUTH_WEAK_PASSWORD: "Password is too weak. Please use a stronger password.",
    ErrorCode.AUTH_UNAUTHORIZED: "You don't have permission to perform this action.",
    ErrorCode.NETWORK_OFFLINE: "You appear to be offline. Please check your internet connection.",
    ErrorCode.NETWORK_TIMEOUT: "The request timed out. Please try again.",
    ErrorCode.NETWORK_CONNECTION_FAILED: "Unable to connect to the server. Please try again later.",
    ErrorCode.DB_INSERT_FAILED: "Failed to save the data. Please try again.",
    ErrorCode.DB_UPDATE_FAILED: "Failed to update the data. Please try again.",
    ErrorCode.DB_DELETE_FAILED: "Failed to delete the item. Please try again.",
    ErrorCode.DB_FETCH_FAILED: "Failed to load the data. Please refresh the page.",
    ErrorCode.DB_NOT_FOUND: "The requested item was not found.",
    ErrorCode.DB_CONSTRAINT_VIOLATION: "This operation violates data constraints.",
    ErrorCode.DB_PERMISSION_DENIED: "You don't have permission to access this data.",
    ErrorCode.VALIDATION_FAILED: "Please check your input and try again.",
    ErrorCode.VALIDATION_REQUIRED_FIELD: "Please fill in all required fields.",
    ErrorCode.VALIDATION_INVALID_FORMAT: "Please check the format of your input.",
    ErrorCode.UNKNOWN_ERROR: "An unexpected error occurred. Please try again.",
    ErrorCode.UNEXPECTED_ERROR: "Something went wrong. Please try again later.",
    ErrorCode.OPERATION_CANCELLED: "The operation was cancelled.",
}

NON_RECOVERABLE_CODES = frozenset(
    {ErrorCode.AUTH_UNAUTHORIZED, ErrorCode.DB_PERMISSION_DENIED}
)


def default_severity(code: ErrorCode) -> ErrorSeverity:
    if code.value.startswith(("AUTH_", "DB_")):
        return ErrorSeverity.HIGH
    if code.value.startswith("NETWORK_"):
        return ErrorSeverity.MEDIUM
    if code.value.startswith("VALIDATION_"):
        return ErrorSeverity.LOW
    return ErrorSeverity.MEDIUM


class AppError(Exception):
    """Classified error carrying a user-facing message.

    Every failure that leaves the request core is an ``AppError``; callers
    branch on ``code`` and show ``user_message``.
    """

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        user_message: Optional[str] = None,
        original_error: Any = None,
        context: Optional[Mapping[str, Any]] = None,
        severity: Optional[ErrorSeverity] = None,
        recoverable: Optional[bool] = None,
    ) -> None:
        self.code = ErrorCode(code)
        self.message = message
        self.user_message = user_message or DEFAULT_USER_MESSAGES.get(
            self.code, DEFAULT_USER_MESSAGES[ErrorCode.UNKNOWN_ERROR]
        )
        self.original_error = original_error
        self.context: Dict[str, Any] = dict(context or {})
        self.severity = severity or default_severity(self.code)
        self.recoverable = (
            recoverable
            if recoverable is not None
            else self.code not in NON_RECOVERABLE_CODES
        )
        self.timestamp = datetime.now(timezone.utc)
        super().__init__(message)

    @property
    def is_network_error(self) -> bool:
        return self.code.value.startswith("NETWORK_")

    @property
    def is_auth_error(self) -> bool:
        return self.code.value.startswith("AUTH_")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": type(self).__name__,
            "code": self.code.value,
            "message": self.message,
            "user_message": self.user_message,
            "severity": self.severity.value,
            "recoverable": self.recoverable,
            "timestamp": self.timestamp.isoformat(),
            "context": self.context,
        }

    def __repr__(self) -> str:
        return f"{type(self).__name__}(code={self.code.value!r}, message={self.message!r})"


class InvalidTransition(AppError):
    """Raised when a status change is not allowed by the workflow."""

    def __init__(self, current: str, target: str) -> None:
        super().__init__(
            ErrorCode.VALIDATION_FAILED,
            f"Cannot change status from {current!r} to {target!r}",
            user_message=f"A request in status '{current}' cannot be moved to '{target}'.",
            context={"from_status": current, "to_status": target},
        )
        self.current = current
        self.target = target
