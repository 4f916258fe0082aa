"""
upload_service.py — Multipart Upload Orchestration
====================================================

Drives a Video through its upload phase:

    initiate  → Video(uploading) + open S3 multipart upload
    put_part  → forward one chunk, remember its ETag
    complete  → assemble, verify, Video(queued) + Job(pending), enqueue
    abort     → cancel the multipart upload and drop the Video

Every operation is scoped to the calling user; a video that does not
exist and one that belongs to someone else both answer NOT_FOUND.
"""

import logging
import math
import os
import uuid
from typing import Callable, Optional

from botocore.exceptions import ClientError
from sqlalchemy.orm import Session

from miraidub.config import (
    ESTIMATED_BYTES_PER_MINUTE, FREE_TIER_MAX_SECONDS, MAX_PART_NUMBER,
    MAX_THUMBNAIL_BYTES, MAX_UPLOAD_BYTES, SUPPORTED_MIME_TYPES,
    THUMBNAIL_MIME_TYPES, Settings,
)
from miraidub.errors import AppError, ErrorCode, invalid_request, not_found
from miraidub.models import Job, JobStatus, ProcessingStep, User, Video, VideoStatus
from miraidub.schemas import UploadInitiateRequest, VideoProcessingMessage
from miraidub.services.credit_ledger import CreditLedger
from miraidub.utils import storage

logger = logging.getLogger(__name__)

Enqueue = Callable[[dict], None]


def estimate_minutes(file_size: int, duration_seconds: Optional[float]) -> int:
    """Billable minutes guessed before the video has been processed."""
    if duration_seconds:
        return math.ceil(duration_seconds / 60)
    return math.ceil(file_size / ESTIMATED_BYTES_PER_MINUTE)


def get_user_video(db: Session, user_id: str, video_id: str) -> Video:
    video = (
        db.query(Video)
        .filter(Video.id == video_id, Video.user_id == user_id)
        .first()
    )
    if not video:
        raise not_found("Video")
    return video


class UploadOrchestrator:
    def __init__(self, db: Session, settings: Settings, enqueue: Enqueue):
        self.db = db
        self.settings = settings
        self.enqueue = enqueue

    def _uploading_video(self, user_id: str, video_id: str) -> Video:
        video = get_user_video(self.db, user_id, video_id)
        if video.status != VideoStatus.UPLOADING.value:
            raise invalid_request(
                f"Video is not accepting uploads (status: {video.status})"
            )
        return video

    # ── Initiate ─────────────────────────────────────────────

    def initiate(self, user: User, request: UploadInitiateRequest) -> dict:
        estimated = estimate_minutes(request.file_size, request.duration_seconds)

        affordability = CreditLedger(self.db).can_afford(user.id, estimated)
        if not affordability.allowed:
            raise AppError(
                ErrorCode.INSUFFICIENT_CREDITS,
                details={
                    "required": estimated,
                    "available": user.credits_balance,
                    "has_trial": affordability.via_trial,
                    "has_bonus": affordability.via_bonus,
                },
            )

        if request.file_size > MAX_UPLOAD_BYTES:
            raise AppError(
                ErrorCode.FILE_TOO_LARGE,
                f"File exceeds the {MAX_UPLOAD_BYTES // (1024 * 1024)} MB limit",
                details={"max_size": MAX_UPLOAD_BYTES, "file_size": request.file_size},
            )

        extension = SUPPORTED_MIME_TYPES.get(request.content_type)
        if extension is None:
            raise AppError(
                ErrorCode.UNSUPPORTED_FORMAT,
                f"Unsupported video format: {request.content_type}",
                details={"supported": sorted(SUPPORTED_MIME_TYPES)},
            )

        estimated_seconds = request.duration_seconds or estimated * 60
        if estimated_seconds > FREE_TIER_MAX_SECONDS and user.credits_balance < estimated:
            raise invalid_request(
                "Videos longer than 1 minute require purchased credits. "
                "Free videos are limited to 1 minute.",
                details={
                    "max_free_seconds": FREE_TIER_MAX_SECONDS,
                    "estimated_seconds": estimated_seconds,
                },
            )

        video_id = uuid.uuid4().hex
        key = storage.upload_key(user.id, video_id, extension)

        try:
            upload_id = storage.create_multipart_upload(key, request.content_type)
        except ClientError as e:
            logger.error(f"[{video_id}] Could not open multipart upload: {e}")
            raise AppError(ErrorCode.UPLOAD_FAILED, "Could not start the upload") from e

        video = Video(
            id=video_id,
            user_id=user.id,
            title=request.title or os.path.splitext(request.file_name)[0] or request.file_name,
            source_language=request.source_language,
            target_language=request.target_language,
            duration_seconds=(
                math.ceil(request.duration_seconds) if request.duration_seconds else None
            ),
            file_size_bytes=request.file_size,
            mime_type=request.content_type,
            original_key=key,
            status=VideoStatus.UPLOADING.value,
            progress=0,
            upload_id=upload_id,
            uploaded_parts=[],
        )
        self.db.add(video)
        self.db.commit()

        logger.info(
            f"[{video_id}] Upload initiated by {user.id}: "
            f"{request.file_size} bytes, ~{estimated} min"
        )

        return {
            "video_id": video_id,
            "upload_id": upload_id,
            "upload_url": f"{self.settings.api_base_url}/api/upload/{video_id}/chunk",
            "storage_key": key,
            "estimated_credits": estimated,
        }

    # ── Chunks ───────────────────────────────────────────────

    def put_part(self, user_id: str, video_id: str, part_number: int, body: bytes) -> str:
        if not 1 <= part_number <= MAX_PART_NUMBER:
            raise invalid_request(f"Part number must be between 1 and {MAX_PART_NUMBER}")
        if not body:
            raise invalid_request("Chunk body is empty")

        video = self._uploading_video(user_id, video_id)
        if not video.upload_id:
            raise invalid_request("Upload not properly initiated")

        try:
            etag = storage.upload_part(video.original_key, video.upload_id, part_number, body)
        except ClientError as e:
            logger.error(f"[{video_id}] Part {part_number} failed: {e}")
            raise AppError(ErrorCode.UPLOAD_FAILED, f"Failed to upload part {part_number}") from e

        # Reassign so the JSON column registers the change
        video.uploaded_parts = list(video.uploaded_parts or []) + [
            {"part_number": part_number, "etag": etag}
        ]
        self.db.commit()

        logger.debug(f"[{video_id}] Part {part_number} stored ({len(body)} bytes)")
        return etag

    # ── Complete ─────────────────────────────────────────────

    def complete(self, user_id: str, video_id: str):
        """
        Finish the upload and queue the video for processing.

        Returns:
            (video, job)
        """
        video = self._uploading_video(user_id, video_id)
        parts = sorted(video.uploaded_parts or [], key=lambda p: p["part_number"])
        if not video.upload_id or not parts:
            raise invalid_request("No parts have been uploaded")

        try:
            storage.complete_multipart_upload(video.original_key, video.upload_id, parts)
            size = storage.object_size(video.original_key)
        except ClientError as e:
            logger.error(f"[{video_id}] Completing multipart upload failed: {e}")
            raise AppError(ErrorCode.UPLOAD_FAILED, "Failed to complete the upload") from e

        if size is None:
            raise AppError(ErrorCode.UPLOAD_FAILED, "Uploaded file not found in storage")

        video.file_size_bytes = size
        video.status = VideoStatus.QUEUED.value
        video.upload_id = None
        video.uploaded_parts = None

        job = Job(
            video_id=video.id,
            status=JobStatus.PENDING.value,
            current_step=ProcessingStep.UPLOAD.value,
            progress=0,
        )
        self.db.add(job)
        self.db.commit()
        self.db.refresh(job)

        message = VideoProcessingMessage(
            video_id=video.id, job_id=job.id, user_id=user_id
        ).to_message()

        try:
            self.enqueue(message)
            logger.info(f"[{video_id}] Upload complete ({size} bytes); job {job.id} queued")
        except Exception as e:
            logger.warning(f"[{video_id}] Could not queue job {job.id}: {e}")
            job.status = JobStatus.FAILED.value
            job.error_message = "Processing queue unavailable"
            video.status = VideoStatus.FAILED.value
            video.error_message = "Processing queue unavailable"
            self.db.commit()

        return video, job

    # ── Abort ────────────────────────────────────────────────

    def abort(self, user_id: str, video_id: str) -> None:
        video = self._uploading_video(user_id, video_id)

        if video.upload_id:
            try:
                storage.abort_multipart_upload(video.original_key, video.upload_id)
            except ClientError as e:
                logger.warning(f"[{video_id}] Abort of multipart upload failed: {e}")

        self.db.delete(video)
        self.db.commit()
        logger.info(f"[{video_id}] Upload aborted by {user_id}")

    # ── Thumbnail ────────────────────────────────────────────

    def store_thumbnail(
        self, user_id: str, video_id: str, body: bytes, content_type: str
    ) -> str:
        video = get_user_video(self.db, user_id, video_id)

        if content_type not in THUMBNAIL_MIME_TYPES:
            raise AppError(
                ErrorCode.UNSUPPORTED_FORMAT,
                f"Unsupported thumbnail format: {content_type or 'unknown'}",
            )
        if not body:
            raise invalid_request("Thumbnail body is empty")
        if len(body) > MAX_THUMBNAIL_BYTES:
            raise AppError(ErrorCode.FILE_TOO_LARGE, "Thumbnail exceeds 5 MB")

        key = storage.thumbnail_key(video.id)
        try:
            storage.put_object(key, body, content_type)
        except ClientError as e:
            logger.error(f"[{video_id}] Thumbnail upload failed: {e}")
            raise AppError(ErrorCode.UPLOAD_FAILED, "Failed to store thumbnail") from e

        video.thumbnail_key = key
        self.db.commit()
        return key
