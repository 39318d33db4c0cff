"""Central error logging for the request core.

Errors are logged at a level picked from their severity and kept in a small
in-memory ring so an admin endpoint or a test can inspect the latest ones.
"""
import logging
from collections import deque
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Deque, Dict, List, Mapping, Optional

from app.requests.domain.errors import AppError, ErrorSeverity
from app.requests.infrastructure.error_parsers import parse_error

logger = logging.getLogger(__name__)

MAX_LOG_SIZE = 100

_SEVERITY_LEVELS = {
    ErrorSeverity.CRITICAL: logging.ERROR,
    ErrorSeverity.HIGH: logging.ERROR,
    ErrorSeverity.MEDIUM: logging.WARNING,
    ErrorSeverity.LOW: logging.INFO,
}


@dataclass(frozen=True)
class ErrorLogEntry:
    timestamp: datetime
    error: Dict[str, Any]
    context: Dict[str, Any]


_error_log: Deque[ErrorLogEntry] = deque(maxlen=MAX_LOG_SIZE)


def log_error(error: Any, context: Optional[Mapping[str, Any]] = None) -> AppError:
    app_error = parse_error(error)
    merged = {**app_error.context, **dict(context or {})}

    _error_log.appendleft(
        ErrorLogEntry(
            timestamp=datetime.now(timezone.utc),
            error=app_error.to_dict(),
            context=dict(context or {}),
        )
    )
    logger.log(
        _SEVERITY_LEVELS.get(app_error.severity, logging.WARNING),
        "[%s] %s | user_message=%s context=%s",
        app_error.code.value,
        app_error.message,
        app_error.user_message,
        merged,
    )
    return app_error


def handle_mutation_error(
    error: Any,
    operation: str,
    entity_name: str,
    context: Optional[Mapping[str, Any]] = None,
) -> AppError:
    return log_error(
        error,
        {**dict(context or {}), "operation": operation, "entity_name": entity_name},
    )


def handle_query_error(
    error: Any,
    entity_name: str,
    context: Optional[Mapping[str, Any]] = None,
) -> AppError:
    return log_error(
        error,
        {**dict(context or {}), "operation": "fetch", "entity_name": entity_name},
    )


def get_error_message(error: Any) -> str:
    return parse_error(error).user_message


def recent_errors() -> List[ErrorLogEntry]:
    return list(_error_log)


def clear_error_log() -> None:
    _error_log.clear()
