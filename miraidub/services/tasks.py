"""
tasks.py — Celery Async Tasks
================================

Wraps the processing queue consumer as a Celery task.  Each delivery
opens its own database session and Replicate client.

Usage from API:
    from miraidub.services.tasks import enqueue_video_processing
    enqueue_video_processing({"type": "PROCESS_VIDEO", "videoId": ..., ...})
"""

import logging

from pydantic import ValidationError

from miraidub.celery_app import celery_app
from miraidub.config import MAX_PROCESSING_ATTEMPTS, get_settings
from miraidub.database import SessionLocal
from miraidub.schemas import VideoProcessingMessage
from miraidub.services.replicate_client import ReplicateClient
from miraidub.services.video_processor import process_video_message

logger = logging.getLogger(__name__)


@celery_app.task(
    bind=True,
    name="miraidub.process_video",
    max_retries=MAX_PROCESSING_ATTEMPTS - 1,
    acks_late=True,
)
def process_video_task(self, message: dict):
    """
    Celery task: submit one video to Replicate.

    Args:
        message: {"type": "PROCESS_VIDEO", "videoId", "jobId", "userId"}
    """
    attempts = self.request.retries + 1

    try:
        parsed = VideoProcessingMessage.model_validate(message)
    except ValidationError as e:
        logger.error(f"Discarding malformed processing message {message!r}: {e}")
        return {"acknowledged": True, "error": "Malformed message"}

    settings = get_settings()
    db = SessionLocal()
    try:
        with ReplicateClient.from_settings(settings) as replicate:
            outcome = process_video_message(db, parsed, attempts, replicate, settings)
    finally:
        db.close()

    if outcome.retry_in is not None:
        raise self.retry(countdown=outcome.retry_in)

    return outcome.as_dict()


def enqueue_video_processing(message: dict) -> None:
    """Put a processing message on the queue."""
    process_video_task.delay(message)
    logger.info(f"Queued processing for job {message.get('jobId')}")


def get_enqueue():
    """FastAPI dependency returning the function that enqueues processing."""
    return enqueue_video_processing
