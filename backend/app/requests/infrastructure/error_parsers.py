"""Convert foreign error shapes into classified ``AppError`` instances.

``parse_error`` walks ``ERROR_PARSER_CHAIN`` in order and uses the first
converter whose predicate matches, so more specific shapes come first.
"""
import asyncio
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

from jose.exceptions import ExpiredSignatureError, JWTError
from sqlalchemy.exc import DBAPIError, NoResultFound

from app.requests.domain.errors import AppError, ErrorCode, ErrorSeverity

OPERATION_CODES: Dict[str, ErrorCode] = {
    "insert": ErrorCode.DB_INSERT_FAILED,
    "update": ErrorCode.DB_UPDATE_FAILED,
    "delete": ErrorCode.DB_DELETE_FAILED,
    "fetch": ErrorCode.DB_FETCH_FAILED,
}

# (store code, error code, user message)
STORE_CODE_MAP: Dict[str, Tuple[ErrorCode, str]] = {
    "PGRST116": (ErrorCode.DB_NOT_FOUND, "The requested item was not found."),
    "23505": (ErrorCode.DB_CONSTRAINT_VIOLATION, "This item already exists."),
    "23503": (
        ErrorCode.DB_CONSTRAINT_VIOLATION,
        "Cannot complete this operation due to related data.",
    ),
    "42501": (
        ErrorCode.DB_PERMISSION_DENIED,
        "You don't have permission to perform this action.",
    ),
    "42P01": (
        ErrorCode.DB_FETCH_FAILED,
        "A database error occurred. Please contact support.",
    ),
    "PGRST301": (
        ErrorCode.AUTH_SESSION_EXPIRED,
        "Your session has expired. Please log in again.",
    ),
}

AUTH_ERROR_MAP: List[Tuple[str, ErrorCode]] = [
    ("invalid_credentials", ErrorCode.AUTH_INVALID_CREDENTIALS),
    ("invalid login credentials", ErrorCode.AUTH_INVALID_CREDENTIALS),
    ("user_not_found", ErrorCode.AUTH_USER_NOT_FOUND),
    ("user not found", ErrorCode.AUTH_USER_NOT_FOUND),
    ("email_not_confirmed", ErrorCode.AUTH_EMAIL_NOT_CONFIRMED),
    ("email not confirmed", ErrorCode.AUTH_EMAIL_NOT_CONFIRMED),
    ("user_already_exists", ErrorCode.AUTH_EMAIL_ALREADY_EXISTS),
    ("user already registered", ErrorCode.AUTH_EMAIL_ALREADY_EXISTS),
    ("weak_password", ErrorCode.AUTH_WEAK_PASSWORD),
    ("session_expired", ErrorCode.AUTH_SESSION_EXPIRED),
    ("jwt expired", ErrorCode.AUTH_SESSION_EXPIRED),
    ("refresh token not found", ErrorCode.AUTH_SESSION_EXPIRED),
    ("unauthorized", ErrorCode.AUTH_UNAUTHORIZED),
]

NETWORK_MARKERS = ("network", "fetch", "connection", "timeout", "timed out", "offline")
ROW_SECURITY_MARKER = "row-level security"


def parse_store_error(
    code: Optional[str],
    message: str,
    operation: str = "fetch",
    original_error: Any = None,
    context: Optional[Mapping[str, Any]] = None,
) -> AppError:
    error_code = OPERATION_CODES.get(operation, ErrorCode.DB_FETCH_FAILED)
    user_message: Optional[str] = None

    if code in STORE_CODE_MAP:
        error_code, user_message = STORE_CODE_MAP[code]
    elif code and code.startswith("23"):
        # Remaining integrity class: not-null, check constraints
        error_code = ErrorCode.DB_CONSTRAINT_VIOLATION

    if ROW_SECURITY_MARKER in (message or "").lower():
        error_code = ErrorCode.DB_PERMISSION_DENIED
        user_message = "You don't have permission to access this data."

    details: Dict[str, Any] = {"store_code": code, "operation": operation}
    details.update(context or {})
    return AppError(
        error_code,
        message,
        user_message=user_message,
        original_error=original_error,
        context=details,
    )


def parse_auth_error(error: Any) -> AppError:
    if isinstance(error, ExpiredSignatureError):
        return AppError(
            ErrorCode.AUTH_SESSION_EXPIRED, str(error) or "Token expired", original_error=error
        )
    if isinstance(error, JWTError):
        return AppError(
            ErrorCode.AUTH_UNAUTHORIZED, str(error) or "Invalid token", original_error=error
        )

    name = str(error.get("name") or "")
    message = str(error.get("message") or "")
    status = error.get("status")

    if "email rate limit exceeded" in message.lower():
        return AppError(
            ErrorCode.AUTH_INVALID_CREDENTIALS,
            message,
            user_message="Too many attempts. Please wait a few minutes and try again.",
            original_error=error,
            severity=ErrorSeverity.MEDIUM,
        )
    if "password should be" in message.lower():
        return AppError(
            ErrorCode.AUTH_WEAK_PASSWORD, message, user_message=message, original_error=error
        )

    code = ErrorCode.AUTH_INVALID_CREDENTIALS
    # Generic client error names ("AuthApiError") carry no meaning on their own
    key = f"{name} {message}".lower()
    for marker, mapped in AUTH_ERROR_MAP:
        if marker in key:
            code = mapped
            break
    return AppError(
        code,
        message,
        original_error=error,
        context={"auth_error_name": name, "status": status},
    )


def parse_network_error(error: BaseException) -> AppError:
    message = str(error) or type(error).__name__
    lowered = message.lower()
    if "offline" in lowered:
        code = ErrorCode.NETWORK_OFFLINE
    elif isinstance(error, (asyncio.TimeoutError, TimeoutError)) or (
        "timeout" in lowered or "timed out" in lowered
    ):
        code = ErrorCode.NETWORK_TIMEOUT
    else:
        code = ErrorCode.NETWORK_CONNECTION_FAILED
    return AppError(code, message, original_error=error, recoverable=True)


def _sqlstate(error: DBAPIError) -> Optional[str]:
    orig = getattr(error, "orig", None)
    for candidate in (orig, getattr(orig, "__cause__", None)):
        if candidate is None:
            continue
        code = getattr(candidate, "sqlstate", None) or getattr(candidate, "pgcode", None)
        if code:
            return str(code)
    return None


def _is_auth_mapping(error: Any) -> bool:
    return (
        isinstance(error, Mapping)
        and isinstance(error.get("message"), str)
        and "status" in error
        and ("name" in error or "is_auth_error" in error)
    )


def _is_store_mapping(error: Any) -> bool:
    return (
        isinstance(error, Mapping)
        and "code" in error
        and "message" in error
        and "details" in error
    )


def _is_connection_error(error: Any) -> bool:
    if isinstance(error, (asyncio.TimeoutError, TimeoutError, ConnectionError)):
        return True
    if isinstance(error, DBAPIError):
        if error.connection_invalidated:
            return True
        orig = getattr(error, "orig", None)
        return any(
            isinstance(cause, (OSError, asyncio.TimeoutError))
            for cause in (orig, getattr(orig, "__cause__", None))
        )
    return isinstance(error, OSError) and not isinstance(error, FileNotFoundError)


def _is_network_like(error: Any) -> bool:
    if not isinstance(error, Exception):
        return False
    message = str(error).lower()
    return any(marker in message for marker in NETWORK_MARKERS)


Parser = Callable[[Any, str, Mapping[str, Any]], AppError]

ERROR_PARSER_CHAIN: List[Tuple[Callable[[Any], bool], Parser]] = [
    (lambda e: isinstance(e, AppError), lambda e, op, ctx: e),
    (
        lambda e: isinstance(e, JWTError) or _is_auth_mapping(e),
        lambda e, op, ctx: parse_auth_error(e),
    ),
    (
        lambda e: isinstance(e, NoResultFound),
        lambda e, op, ctx: parse_store_error("PGRST116", str(e), op, e, ctx),
    ),
    (_is_connection_error, lambda e, op, ctx: parse_network_error(e)),
    (
        lambda e: isinstance(e, DBAPIError),
        lambda e, op, ctx: parse_store_error(_sqlstate(e), str(e.orig or e), op, e, ctx),
    ),
    (
        _is_store_mapping,
        lambda e, op, ctx: parse_store_error(
            e.get("code"),
            str(e.get("message") or ""),
            op,
            e,
            {"details": e.get("details"), "hint": e.get("hint"), **ctx},
        ),
    ),
    (_is_network_like, lambda e, op, ctx: parse_network_error(e)),
    (
        lambda e: isinstance(e, Exception),
        lambda e, op, ctx: AppError(
            ErrorCode.UNEXPECTED_ERROR, str(e) or type(e).__name__, original_error=e, context=ctx
        ),
    ),
    (
        lambda e: isinstance(e, str),
        lambda e, op, ctx: AppError(ErrorCode.UNEXPECTED_ERROR, e, context=ctx),
    ),
]


def parse_error(
    error: Any,
    operation: str = "fetch",
    context: Optional[Mapping[str, Any]] = None,
) -> AppError:
    """Classify any raised value. Never raises."""
    ctx = dict(context or {})
    for matches, convert in ERROR_PARSER_CHAIN:
        if matches(error):
            return convert(error, operation, ctx)
    return AppError(
        ErrorCode.UNKNOWN_ERROR,
        "An unknown error occurred",
        original_error=error,
        context=ctx,
    )
