"""
credits.py — Credits & Polar Checkout Router
==============================================

Uses Polar (polar.sh) for payments.  Purchased credits are seconds of
processed video; they are granted by the ``order.created`` webhook,
never by this router.

Handles:
  GET  /api/credits/balance  — balance and free-video entitlements
  GET  /api/credits/packages — purchasable packages (public)
  GET  /api/credits/history  — paginated ledger (page, limit, type)
  POST /api/credits/checkout — create a Polar checkout (full accounts only)
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from miraidub.config import CREDIT_PACKAGES, Settings, get_settings
from miraidub.database import get_db
from miraidub.errors import AppError, ErrorCode
from miraidub.middleware.auth_middleware import get_db_user, get_full_user
from miraidub.models import Transaction, TransactionType, User
from miraidub.responses import (
    paginated_response, serialize_transaction, serialize_user, success_response,
)
from miraidub.schemas import CheckoutRequest
from miraidub.services.credit_ledger import has_trial
from miraidub.services.polar_client import create_checkout_session

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("/credits/balance")
async def get_balance(user: User = Depends(get_db_user)):
    """Current balance and which free videos are left."""
    profile = serialize_user(user)
    return success_response({
        "credits_balance": user.credits_balance,
        "minutes_available": round(user.credits_balance / 60, 1),
        "plan": user.plan,
        "is_anonymous": user.is_anonymous,
        "has_trial": has_trial(user),
        "trial_videos_used": user.trial_videos_used,
        "trial_videos_remaining": profile["trial_videos_remaining"],
        "bonus_videos_available": user.bonus_videos_available,
    })


@router.get("/credits/packages")
async def get_packages():
    """Return available credit packages (public endpoint)."""
    return success_response([
        {
            "id": package_id,
            "name": package["name"],
            "seconds": package["seconds"],
            "minutes": package["seconds"] // 60,
            "price": package["price"],
            "popular": package["popular"],
        }
        for package_id, package in CREDIT_PACKAGES.items()
    ])


@router.get("/credits/history")
async def get_history(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    type: Optional[TransactionType] = None,
    user: User = Depends(get_db_user),
    db: Session = Depends(get_db),
):
    """The user's ledger, newest entry first."""
    query = db.query(Transaction).filter(Transaction.user_id == user.id)
    if type is not None:
        query = query.filter(Transaction.type == type.value)

    total = query.count()
    transactions = (
        query.order_by(Transaction.created_at.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )

    return paginated_response(
        [serialize_transaction(tx) for tx in transactions], total, page, limit
    )


@router.post("/credits/checkout")
async def create_checkout(
    req: CheckoutRequest,
    user: User = Depends(get_full_user),
    settings: Settings = Depends(get_settings),
):
    """
    Create a Polar checkout for a credit package and return its URL.

    Polar API: POST /v1/checkouts/
    """
    package = CREDIT_PACKAGES.get(req.package_id)
    if package is None:
        raise AppError(ErrorCode.INVALID_PACKAGE, f"Invalid package: {req.package_id}")

    if not settings.polar_access_token:
        raise AppError(ErrorCode.PAYMENT_FAILED, "Payments are not configured")

    product_id = settings.polar_product_ids.get(req.package_id)
    if not product_id:
        raise AppError(
            ErrorCode.PAYMENT_FAILED,
            f"Product ID not configured for the {package['name']} package",
        )

    result = await create_checkout_session(
        settings,
        product_id=product_id,
        customer_email=user.email,
        metadata={
            "userId": user.id,
            "packageId": req.package_id,
            "creditsAmount": package["seconds"],
        },
        success_url=f"{settings.api_base_url}/checkout/success?checkout_id={{CHECKOUT_ID}}",
    )

    logger.info(f"Polar checkout created for {user.id}: package={req.package_id}")
    return success_response(result)
