"""
video_processor.py — Processing Queue Consumer
================================================

Handles one ``PROCESS_VIDEO`` delivery:

  1. Job → processing / analyze / 10 %, Video → processing / 10 %
  2. Submit the source video to Replicate with a completion webhook
  3. Store the prediction id, move to translate / 30 %

On failure the delivery is retried after 30 · 2^attempts seconds until
the third attempt, which marks the Job and Video failed for good.  The
rest of the pipeline happens in the Replicate webhook.

This module is framework-free; ``services/tasks.py`` adapts it to Celery.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy.orm import Session

from miraidub.config import MAX_PROCESSING_ATTEMPTS, RETRY_BASE_DELAY_S, Settings
from miraidub.models import Job, JobStatus, ProcessingStep, Video, VideoStatus
from miraidub.schemas import VideoProcessingMessage
from miraidub.services.replicate_client import ReplicateClient, replicate_language
from miraidub.utils import storage

logger = logging.getLogger(__name__)

TERMINAL_JOB_STATES = {JobStatus.COMPLETED.value, JobStatus.FAILED.value}


@dataclass
class ProcessingOutcome:
    """What the queue should do with the delivery."""

    acknowledged: bool
    retry_in: Optional[int] = None
    prediction_id: Optional[str] = None
    error: Optional[str] = None

    def as_dict(self) -> dict:
        return {
            "acknowledged": self.acknowledged,
            "retry_in": self.retry_in,
            "prediction_id": self.prediction_id,
            "error": self.error,
        }


def retry_delay_for(attempts: int) -> int:
    """Seconds to wait before redelivering after failed attempt ``attempts``."""
    return RETRY_BASE_DELAY_S * 2 ** attempts


def _now():
    return datetime.now(timezone.utc)


def _mark_failed(db: Session, message: VideoProcessingMessage, error: str, attempts: int) -> None:
    job = db.get(Job, message.job_id)
    video = db.get(Video, message.video_id)

    if job:
        job.status = JobStatus.FAILED.value
        job.error_message = error
        job.retry_count = attempts
        job.completed_at = _now()
    if video:
        video.status = VideoStatus.FAILED.value
        video.error_message = error
    db.commit()


def process_video_message(
    db: Session,
    message: VideoProcessingMessage,
    attempts: int,
    replicate: ReplicateClient,
    settings: Settings,
) -> ProcessingOutcome:
    """
    Process one delivery of a processing message.

    Args:
        db:        Session owned by the caller for this delivery.
        message:   The parsed queue message.
        attempts:  1-based delivery count.
        replicate: Client used to submit the prediction.
        settings:  Public URL base and webhook URL come from here.
    """
    tag = f"[{message.job_id}]"

    job = db.get(Job, message.job_id)
    if job is None:
        logger.error(f"{tag} Job not found; dropping message")
        return ProcessingOutcome(acknowledged=True, error="Job not found")

    if job.status in TERMINAL_JOB_STATES:
        logger.info(f"{tag} Job already {job.status}; nothing to do")
        return ProcessingOutcome(acknowledged=True, prediction_id=job.replicate_id)

    try:
        # ── Step 1: mark as processing ───────────────────────
        job.status = JobStatus.PROCESSING.value
        job.current_step = ProcessingStep.ANALYZE.value
        job.progress = 10
        job.started_at = _now()

        video = db.get(Video, message.video_id)
        if video is not None:
            video.status = VideoStatus.PROCESSING.value
            video.progress = 10
        db.commit()

        # ── Step 2: load the source ──────────────────────────
        if video is None:
            raise LookupError(f"Video not found: {message.video_id}")
        if not video.original_key:
            raise ValueError(f"Video {video.id} has no uploaded source")

        # ── Step 3: submit to Replicate ──────────────────────
        logger.info(f"{tag} Attempt {attempts}: submitting video {video.id} to Replicate")
        prediction = replicate.create_translation_prediction(
            video_url=storage.public_url(video.original_key, settings.r2_public_url),
            output_language=replicate_language(video.target_language),
            webhook_url=settings.replicate_webhook_url,
        )

        # ── Step 4: hand over to the webhook ─────────────────
        job.replicate_id = prediction.id
        job.current_step = ProcessingStep.TRANSLATE.value
        job.progress = 30
        video.progress = 30
        db.commit()

        logger.info(f"{tag} Prediction {prediction.id} started for video {video.id}")
        return ProcessingOutcome(acknowledged=True, prediction_id=prediction.id)

    except Exception as e:
        db.rollback()
        error = str(e) or type(e).__name__

        if attempts < MAX_PROCESSING_ATTEMPTS:
            delay = retry_delay_for(attempts)
            logger.warning(f"{tag} Attempt {attempts} failed: {error}; retrying in {delay}s")
            return ProcessingOutcome(acknowledged=False, retry_in=delay, error=error)

        logger.error(f"{tag} Attempt {attempts} failed: {error}; giving up")
        _mark_failed(db, message, error, attempts)
        return ProcessingOutcome(acknowledged=True, error=error)
