"""
webhook_service.py — Replicate & Polar Event Handling
=======================================================

Applies already-parsed webhook events to the database.

Replicate (keyed by prediction id):
  succeeded            → copy result to storage, complete, settle credits
  failed / canceled    → fail Video and Job
  starting / processing → advisory progress from the prediction logs

Polar:
  order.created                          → credit the purchased seconds
  subscription.created / .updated        → plan = pro
  subscription.canceled                  → plan = free

Each handler commits once.  On any error the session is rolled back so
a half-applied settlement never reaches the database.
"""

import logging
from datetime import datetime, timezone
from typing import Optional

import httpx
from pydantic import ValidationError
from sqlalchemy.orm import Session

from miraidub.config import CREDIT_PACKAGES, DEFAULT_USAGE_SECONDS
from miraidub.errors import ExternalServiceError, not_found
from miraidub.models import (
    Job, JobStatus, PlanType, ProcessingStep, Transaction, TransactionType,
    User, VideoStatus,
)
from miraidub.schemas import (
    CheckoutMetadata, OrderCreated, PredictionFailed, PredictionInProgress,
    PredictionSucceeded, SubscriptionActive, SubscriptionCanceled,
)
from miraidub.services.credit_ledger import CreditLedger
from miraidub.services.job_steps import advances, estimate_progress_from_logs
from miraidub.utils import storage

logger = logging.getLogger(__name__)

TERMINAL_JOB_STATES = {JobStatus.COMPLETED.value, JobStatus.FAILED.value}


def _now():
    return datetime.now(timezone.utc)


# ─────────────────────────────────────────────────────────────
# Replicate
# ─────────────────────────────────────────────────────────────

async def download_output(http_client: httpx.AsyncClient, url: str) -> bytes:
    """Fetch the dubbed video Replicate produced."""
    try:
        response = await http_client.get(url)
    except httpx.HTTPError as e:
        raise ExternalServiceError("replicate", f"Failed to download output: {e}") from e

    if response.status_code >= 400:
        raise ExternalServiceError(
            "replicate",
            f"Failed to download output: HTTP {response.status_code}",
            status=response.status_code,
        )
    return response.content


def _fail(job: Job, error: str) -> None:
    job.status = JobStatus.FAILED.value
    job.error_message = error
    job.completed_at = _now()

    video = job.video
    video.status = VideoStatus.FAILED.value
    video.error_message = error


async def _handle_succeeded(
    db: Session, job: Job, event: PredictionSucceeded, http_client: httpx.AsyncClient
) -> dict:
    if job.status == JobStatus.COMPLETED.value:
        logger.info(f"[{job.id}] Prediction {event.id} already settled; ignoring")
        return {"job_id": job.id, "status": job.status, "duplicate": True}

    url = event.output_url
    if url is None:
        logger.error(f"[{job.id}] Prediction {event.id} succeeded without output")
        _fail(job, "Prediction succeeded without an output video")
        db.commit()
        return {"job_id": job.id, "status": job.status}

    video = job.video
    body = await download_output(http_client, url)
    key = storage.processed_key(video.id)
    storage.put_object(key, body, "video/mp4")

    completed_at = _now()
    video.status = VideoStatus.COMPLETED.value
    video.progress = 100
    video.translated_key = key
    video.error_message = None
    video.completed_at = completed_at

    job.status = JobStatus.COMPLETED.value
    job.progress = 100
    job.current_step = ProcessingStep.FINALIZE.value
    job.error_message = None
    job.completed_at = completed_at

    seconds = video.duration_seconds or DEFAULT_USAGE_SECONDS
    source, balance = CreditLedger(db).settle_usage(
        video.user_id,
        seconds,
        video_id=video.id,
        description=f"Dubbed '{video.title}'",
    )
    video.credits_used = seconds

    db.commit()
    logger.info(
        f"[{job.id}] Video {video.id} completed ({len(body)} bytes); "
        f"{seconds}s settled via {source.value}, balance={balance}"
    )
    return {"job_id": job.id, "status": job.status, "credit_source": source.value}


def _handle_failed(db: Session, job: Job, event: PredictionFailed) -> dict:
    if job.status == JobStatus.COMPLETED.value:
        logger.warning(f"[{job.id}] Ignoring {event.status} for completed prediction {event.id}")
        return {"job_id": job.id, "status": job.status, "duplicate": True}

    error = event.error_message or f"Prediction {event.status}"
    _fail(job, error)
    db.commit()
    logger.info(f"[{job.id}] Prediction {event.id} {event.status}: {error}")
    return {"job_id": job.id, "status": job.status}


def _handle_progress(db: Session, job: Job, event: PredictionInProgress) -> dict:
    if job.status in TERMINAL_JOB_STATES:
        return {"job_id": job.id, "status": job.status}

    hint = estimate_progress_from_logs(event.logs)
    if advances(job.current_step, hint):
        job.status = JobStatus.PROCESSING.value
        job.current_step = hint.step
        job.progress = hint.progress
        job.video.progress = hint.progress
        db.commit()
        logger.debug(f"[{job.id}] Progress → {hint.step} ({hint.progress}%)")

    return {"job_id": job.id, "status": job.status, "current_step": job.current_step}


async def apply_prediction_event(db: Session, event, http_client: httpx.AsyncClient) -> dict:
    """
    Apply one Replicate webhook event.

    Raises:
        AppError NOT_FOUND when no job carries the prediction id.
    """
    job = db.query(Job).filter(Job.replicate_id == event.id).first()
    if job is None:
        logger.warning(f"Replicate webhook for unknown prediction {event.id}")
        raise not_found("Job")

    try:
        if isinstance(event, PredictionSucceeded):
            return await _handle_succeeded(db, job, event, http_client)
        if isinstance(event, PredictionFailed):
            return _handle_failed(db, job, event)
        return _handle_progress(db, job, event)
    except Exception:
        db.rollback()
        raise


# ─────────────────────────────────────────────────────────────
# Polar
# ─────────────────────────────────────────────────────────────

def _ignored(reason: str) -> dict:
    return {"handled": False, "reason": reason}


def _handle_order(db: Session, event: OrderCreated) -> dict:
    order = event.data
    try:
        metadata = CheckoutMetadata.model_validate(order.metadata)
    except ValidationError as e:
        logger.warning(f"Polar order {order.id} has unusable metadata: {e}")
        return _ignored("invalid metadata")

    existing = db.query(Transaction).filter(Transaction.polar_order_id == order.id).first()
    if existing:
        logger.info(f"Polar order {order.id} already credited; ignoring")
        return _ignored("duplicate order")

    user = db.get(User, metadata.user_id)
    if user is None:
        logger.warning(f"Polar order {order.id} for unknown user {metadata.user_id}")
        return _ignored("unknown user")

    package = CREDIT_PACKAGES.get(metadata.package_id, {})
    balance = CreditLedger(db).credit(
        user.id,
        metadata.credits_amount,
        TransactionType.PURCHASE,
        polar_order_id=order.id,
        description=f"Purchased {package.get('name', metadata.package_id)} package",
        details={"package_id": metadata.package_id, "amount": order.amount},
    )
    if order.customer_id:
        user.polar_customer_id = order.customer_id

    db.commit()
    logger.info(
        f"Polar order {order.id}: user={user.id} "
        f"credits=+{metadata.credits_amount} (total={balance})"
    )
    return {"handled": True, "user_id": user.id, "credits_balance": balance}


def _subscription_user(db: Session, event) -> Optional[User]:
    user_id = event.data.user_id
    return db.get(User, user_id) if user_id else None


def _handle_subscription(db: Session, event) -> dict:
    subscription = event.data
    user = _subscription_user(db, event)
    if user is None:
        logger.warning(f"Polar {event.type} {subscription.id} without a known user")
        return _ignored("unknown user")

    if isinstance(event, SubscriptionCanceled):
        user.plan = PlanType.FREE.value
        user.polar_subscription_id = None
    else:
        user.plan = PlanType.PRO.value
        user.polar_subscription_id = subscription.id
        if subscription.customer_id:
            user.polar_customer_id = subscription.customer_id

    db.commit()
    logger.info(f"Polar {event.type}: user={user.id} plan={user.plan}")
    return {"handled": True, "user_id": user.id, "plan": user.plan}


def apply_polar_event(db: Session, event) -> dict:
    try:
        if isinstance(event, OrderCreated):
            return _handle_order(db, event)
        if isinstance(event, (SubscriptionActive, SubscriptionCanceled)):
            return _handle_subscription(db, event)
        return _ignored(f"unhandled event {getattr(event, 'type', '?')}")
    except Exception:
        db.rollback()
        raise
