"""
auth.py — Account Router
==========================

Sign-in and sign-up live in the auth service; this router only reads
the profile and upgrades anonymous accounts.

Handles:
  GET  /api/auth/me      — profile and credit counters
  POST /api/auth/convert — anonymous → full account (+2 bonus videos)
"""

import logging

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from miraidub.config import SIGNUP_BONUS_VIDEOS
from miraidub.database import get_db
from miraidub.errors import AppError, ErrorCode, invalid_request
from miraidub.middleware.auth_middleware import get_db_user
from miraidub.models import User
from miraidub.responses import serialize_user, success_response
from miraidub.schemas import ConvertAccountRequest

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("/auth/me")
async def get_me(user: User = Depends(get_db_user)):
    return success_response(serialize_user(user))


@router.post("/auth/convert")
async def convert_account(
    req: ConvertAccountRequest,
    user: User = Depends(get_db_user),
    db: Session = Depends(get_db),
):
    """
    Turn an anonymous account into a full one.

    The same row is kept, so videos and ledger history carry over.  The
    password is checked for shape only; the auth service stores it.
    """
    if not user.is_anonymous:
        raise invalid_request("Account is already a full account")

    existing = db.query(User).filter(User.email == req.email).first()
    if existing:
        raise AppError(ErrorCode.ALREADY_EXISTS, "Email already registered")

    user.email = req.email
    user.name = req.name
    user.is_anonymous = False
    user.bonus_videos_available += SIGNUP_BONUS_VIDEOS
    db.commit()
    db.refresh(user)

    logger.info(f"User {user.id} converted to a full account")
    return success_response({
        "message": "Account converted successfully",
        "user": serialize_user(user),
    })
