"""
Auth Routes - bearer token to session context
Tokens are issued by the identity provider; this service only verifies them
"""
from fastapi import APIRouter, HTTPException, Depends, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from typing import Optional
from datetime import datetime, timezone, timedelta
from jose import JWTError, jwt
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select
import logging

from database import get_postgres_session, tracker_settings, Profile
from app.requests.application.session import AuthEvent, SessionContext
from app.requests.infrastructure.error_parsers import parse_error

logger = logging.getLogger(__name__)

ACCESS_TOKEN_EXPIRE_MINUTES = 60 * 24  # 24 hours

# Security
security = HTTPBearer()

# Create router
auth_router = APIRouter(prefix="/api/auth", tags=["Auth"])


def create_access_token(data: dict, expires_minutes: int = ACCESS_TOKEN_EXPIRE_MINUTES) -> str:
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + timedelta(minutes=expires_minutes)
    to_encode.update({"exp": expire})
    return jwt.encode(
        to_encode, tracker_settings.jwt_secret_key, algorithm=tracker_settings.jwt_algorithm
    )


def decode_access_token(token: str) -> dict:
    """Decode a bearer token, raising 401 with a readable message."""
    try:
        return jwt.decode(
            token, tracker_settings.jwt_secret_key, algorithms=[tracker_settings.jwt_algorithm]
        )
    except JWTError as e:
        error = parse_error(e)
        logger.info(f"Rejected token: {error.code.value}")
        raise HTTPException(status_code=401, detail=error.user_message)


def _expires_at(payload: dict) -> Optional[datetime]:
    exp = payload.get("exp")
    if exp is None:
        return None
    return datetime.fromtimestamp(exp, tz=timezone.utc)


async def get_current_session(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    session: AsyncSession = Depends(get_postgres_session)
) -> SessionContext:
    """Resolve the bearer token to a session; the profile row supplies the company"""
    payload = decode_access_token(credentials.credentials)
    user_id = payload.get("sub")
    if user_id is None:
        raise HTTPException(status_code=401, detail="Invalid access token")

    result = await session.execute(select(Profile).where(Profile.id == user_id))
    profile = result.scalar_one_or_none()

    if profile is None:
        raise HTTPException(status_code=401, detail="No account found for this token")

    return SessionContext(
        user_id=profile.id,
        email=profile.email,
        full_name=profile.full_name,
        company_id=profile.company_id,
        expires_at=_expires_at(payload),
    )


# ==================== AUTH ROUTES ====================

@auth_router.post("/sign-out")
async def sign_out(
    request: Request,
    current_session: SessionContext = Depends(get_current_session),
):
    """Announce the sign-out; listeners drop the company's cached requests.

    Tokens are stateless, so the client discards its own token.
    """
    request.app.state.session_events.publish(AuthEvent.SIGNED_OUT, current_session)
    logger.info(f"User signed out: {current_session.email}")
    return {"message": "Signed out"}


@auth_router.get("/session")
async def read_session(current_session: SessionContext = Depends(get_current_session)):
    """Current user and company as seen by this service"""
    return {
        "user_id": current_session.user_id,
        "email": current_session.email,
        "full_name": current_session.full_name,
        "display_name": current_session.display_name,
        "company_id": current_session.company_id,
        "has_company": current_session.has_company,
        "expires_at": current_session.expires_at.isoformat() if current_session.expires_at else None,
    }
