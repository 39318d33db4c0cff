import enum
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, List, Optional

from app.requests.domain.errors import AppError, ErrorCode

logger = logging.getLogger(__name__)


class AuthEvent(str, enum.Enum):
    SIGNED_IN = "SIGNED_IN"
    SIGNED_OUT = "SIGNED_OUT"
    TOKEN_REFRESHED = "TOKEN_REFRESHED"
    USER_UPDATED = "USER_UPDATED"


@dataclass(frozen=True)
class SessionContext:
    user_id: str
    email: str
    full_name: Optional[str] = None
    company_id: Optional[str] = None
    expires_at: Optional[datetime] = None

    @property
    def display_name(self) -> str:
        return self.full_name or self.email

    @property
    def has_company(self) -> bool:
        return bool(self.company_id)


def require_company(session: Optional[SessionContext]) -> str:
    """Return the session's company id or raise ``AUTH_UNAUTHORIZED``."""
    if session is None:
        raise AppError(ErrorCode.AUTH_UNAUTHORIZED, "No active session")
    if not session.company_id:
        raise AppError(
            ErrorCode.AUTH_UNAUTHORIZED,
            f"User {session.user_id} has no company",
            user_message="Your profile is not linked to a company yet.",
            context={"user_id": session.user_id},
        )
    return session.company_id


SessionListener = Callable[[AuthEvent, Optional[SessionContext]], None]


class SessionState:
    """Current user session plus auth event fan-out."""

    def __init__(self) -> None:
        self._current: Optional[SessionContext] = None
        self._listeners: List[SessionListener] = []

    @property
    def current(self) -> Optional[SessionContext]:
        return self._current

    @property
    def is_authenticated(self) -> bool:
        return self._current is not None

    def require_company(self) -> str:
        return require_company(self._current)

    def subscribe(self, listener: SessionListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def sign_in(self, session: SessionContext) -> None:
        self._current = session
        self.publish(AuthEvent.SIGNED_IN)

    def refresh(self, expires_at: datetime) -> None:
        if self._current is None:
            return
        self._current = SessionContext(
            user_id=self._current.user_id,
            email=self._current.email,
            full_name=self._current.full_name,
            company_id=self._current.company_id,
            expires_at=expires_at,
        )
        self.publish(AuthEvent.TOKEN_REFRESHED)

    def update_user(self, session: SessionContext) -> None:
        self._current = session
        self.publish(AuthEvent.USER_UPDATED)

    def sign_out(self) -> None:
        previous = self._current
        self._current = None
        self.publish(AuthEvent.SIGNED_OUT, previous)

    def publish(self, event: AuthEvent, session: Optional[SessionContext] = None) -> None:
        """Notify listeners; ``session`` defaults to the current one.

        A service handling many users publishes each request's session
        explicitly and never signs in itself.
        """
        payload = session if session is not None else self._current
        logger.info(f"Auth event: {event.value}")
        for listener in list(self._listeners):
            listener(event, payload)
