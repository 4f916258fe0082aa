"""
auth_middleware.py — JWT Authentication Dependencies
======================================================

Verifies the HS256 session JWTs issued by the auth service and turns
them into FastAPI dependencies.  The first request of a user creates
their row: full accounts start with the sign-up bonus videos, anonymous
accounts with none.

Usage in routes:
    from miraidub.middleware.auth_middleware import get_db_user

    @router.get("/protected")
    async def protected(user: User = Depends(get_db_user)):
        return {"user": user.id}
"""

import logging
from typing import Optional

import jwt
from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from miraidub.config import SIGNUP_BONUS_VIDEOS, Settings, get_settings
from miraidub.database import get_db
from miraidub.errors import AppError, ErrorCode
from miraidub.models import User

logger = logging.getLogger(__name__)

security = HTTPBearer(auto_error=False)


def _decode_jwt(token: str, secret: str) -> dict:
    """Decode and verify a session token."""
    try:
        return jwt.decode(token, secret, algorithms=["HS256"])
    except jwt.ExpiredSignatureError:
        raise AppError(ErrorCode.UNAUTHORIZED, "Token expired")
    except jwt.InvalidTokenError as e:
        raise AppError(ErrorCode.UNAUTHORIZED, f"Invalid token: {str(e)}")


class CurrentUser:
    """Lightweight user object extracted from JWT."""
    def __init__(
        self,
        user_id: str,
        email: Optional[str] = None,
        name: str = "",
        image: str = "",
        is_anonymous: bool = False,
    ):
        self.id = user_id
        self.email = email
        self.name = name
        self.image = image
        self.is_anonymous = is_anonymous


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    settings: Settings = Depends(get_settings),
) -> CurrentUser:
    """
    FastAPI dependency: extract and verify JWT → return CurrentUser.

    Use in route parameters:
        user = Depends(get_current_user)
    """
    if not credentials:
        raise AppError(ErrorCode.UNAUTHORIZED)

    payload = _decode_jwt(credentials.credentials, settings.auth_secret)

    user_id = payload.get("sub") or payload.get("id")
    email = payload.get("email")
    is_anonymous = bool(payload.get("is_anonymous", not email))

    if not user_id or (not email and not is_anonymous):
        raise AppError(ErrorCode.UNAUTHORIZED, "Invalid token payload")

    return CurrentUser(
        user_id=str(user_id),
        email=email,
        name=payload.get("name") or "",
        image=payload.get("picture", payload.get("image")) or "",
        is_anonymous=is_anonymous,
    )


async def get_optional_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    settings: Settings = Depends(get_settings),
) -> Optional[CurrentUser]:
    """
    Same as get_current_user but returns None instead of 401
    for unauthenticated requests. Useful for public endpoints.
    """
    if not credentials:
        return None

    try:
        return await get_current_user(credentials, settings)
    except AppError:
        return None


# ─────────────────────────────────────────────────────────────
# Helper: get or create user in DB
# ─────────────────────────────────────────────────────────────

def get_or_create_user(db: Session, user: CurrentUser) -> User:
    """Find the user's row or create it with the default entitlements."""
    db_user = db.get(User, user.id)
    if db_user:
        return db_user

    email = None if user.is_anonymous else user.email
    if email and db.query(User).filter(User.email == email).first():
        logger.warning(f"Email of new user {user.id} already belongs to another account")
        email = None

    db_user = User(
        id=user.id,
        email=email,
        name=user.name or None,
        image=user.image or None,
        is_anonymous=user.is_anonymous,
        bonus_videos_available=0 if user.is_anonymous else SIGNUP_BONUS_VIDEOS,
    )
    db.add(db_user)
    db.commit()
    db.refresh(db_user)

    logger.info(
        f"Created {'anonymous' if user.is_anonymous else 'full'} user {db_user.id}"
    )
    return db_user


async def get_db_user(
    user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> User:
    """FastAPI dependency: the authenticated user's database row."""
    return get_or_create_user(db, user)


async def get_full_user(db_user: User = Depends(get_db_user)) -> User:
    """Like get_db_user, but rejects anonymous accounts."""
    if db_user.is_anonymous:
        raise AppError(ErrorCode.ANONYMOUS_REQUIRED)
    return db_user
