"""
videos.py — Video Library Router
==================================

Handles:
  GET    /api/videos                     — paginated list (page, limit, status)
  GET    /api/videos/{video_id}          — one video with its latest job
  DELETE /api/videos/{video_id}          — delete the video and its stored files
  GET    /api/videos/{video_id}/download — stream the dubbed result
  GET    /api/videos/{video_id}/download-url — signed link for the above
"""

import logging
from typing import Optional
from urllib.parse import quote

from botocore.exceptions import ClientError
from fastapi import APIRouter, Depends, Query
from fastapi.responses import StreamingResponse
from sqlalchemy.orm import Session

from miraidub.config import Settings, get_settings
from miraidub.database import get_db
from miraidub.errors import AppError, ErrorCode, invalid_request, not_found
from miraidub.middleware.auth_middleware import (
    CurrentUser, get_db_user, get_optional_user,
)
from miraidub.models import Job, User, Video, VideoStatus
from miraidub.responses import (
    isoformat, paginated_response, serialize_video, success_response,
)
from miraidub.services.upload_service import get_user_video
from miraidub.utils import storage
from miraidub.utils.download_token import generate_download_token, validate_download_token

logger = logging.getLogger(__name__)
router = APIRouter()


def _latest_job(db: Session, video_id: str) -> Optional[Job]:
    return (
        db.query(Job)
        .filter(Job.video_id == video_id)
        .order_by(Job.created_at.desc())
        .first()
    )


def _downloadable(video: Video) -> Video:
    if video.status != VideoStatus.COMPLETED.value or not video.translated_key:
        raise invalid_request("Video is not ready for download")
    return video


def _download_name(video: Video) -> str:
    stem = "".join(c if c.isalnum() or c in "-_ " else "_" for c in video.title).strip()
    return f"{stem or 'video'}_{video.target_language}.mp4"


def _content_disposition(file_name: str) -> str:
    """Attachment header with an ASCII fallback and the UTF-8 name (RFC 6266)."""
    fallback = "".join(c if c.isascii() and c != '"' else "_" for c in file_name)
    return f"attachment; filename=\"{fallback}\"; filename*=UTF-8''{quote(file_name)}"


@router.get("/videos")
async def list_videos(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    status: Optional[VideoStatus] = None,
    user: User = Depends(get_db_user),
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    """List the user's videos, newest first."""
    query = db.query(Video).filter(Video.user_id == user.id)
    if status is not None:
        query = query.filter(Video.status == status.value)

    total = query.count()
    videos = (
        query.order_by(Video.created_at.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )

    return paginated_response(
        [serialize_video(v, settings.r2_public_url) for v in videos],
        total,
        page,
        limit,
    )


@router.get("/videos/{video_id}")
async def get_video(
    video_id: str,
    user: User = Depends(get_db_user),
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    video = get_user_video(db, user.id, video_id)
    data = serialize_video(video, settings.r2_public_url, job=_latest_job(db, video.id))
    if "job" not in data:
        data["job"] = None
    return success_response(data)


@router.delete("/videos/{video_id}")
async def delete_video(
    video_id: str,
    user: User = Depends(get_db_user),
    db: Session = Depends(get_db),
):
    """Delete a video, its jobs, and every object stored for it."""
    video = get_user_video(db, user.id, video_id)

    pending_upload = (
        (video.original_key, video.upload_id)
        if video.status == VideoStatus.UPLOADING.value and video.upload_id
        else None
    )
    keys = [
        key
        for key in (
            video.original_key,
            video.translated_key,
            video.thumbnail_key,
            video.preview_key,
        )
        if key
    ]
    db.delete(video)
    db.commit()

    # Stored files go only once the row is gone
    if pending_upload:
        try:
            storage.abort_multipart_upload(*pending_upload)
        except ClientError as e:
            logger.warning(f"[{video_id}] Abort of multipart upload failed: {e}")
    storage.delete_objects(keys)

    logger.info(f"[{video_id}] Deleted by {user.id} ({len(keys)} stored objects)")
    return success_response({"video_id": video_id, "deleted": True})


@router.get("/videos/{video_id}/download")
async def download_video(
    video_id: str,
    token: Optional[str] = None,
    user: Optional[CurrentUser] = Depends(get_optional_user),
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    """
    Stream the dubbed video.

    Authorized either by the session or by a signed ``?token=`` link,
    so share sheets and browsers can download without the session.
    """
    if token:
        claims = validate_download_token(token, settings.download_token_secret)
        if claims is None or claims["video_id"] != video_id:
            raise AppError(ErrorCode.UNAUTHORIZED, "Invalid or expired download link")
        owner_id = claims["user_id"]
    elif user is not None:
        owner_id = user.id
    else:
        raise AppError(ErrorCode.UNAUTHORIZED)

    video = _downloadable(get_user_video(db, owner_id, video_id))

    size = storage.object_size(video.translated_key)
    if size is None:
        raise not_found("Video file")

    logger.info(f"[{video_id}] Download started ({size} bytes)")
    return StreamingResponse(
        storage.stream_object(video.translated_key),
        media_type="video/mp4",
        headers={
            "Content-Disposition": _content_disposition(_download_name(video)),
            "Content-Length": str(size),
        },
    )


@router.get("/videos/{video_id}/download-url")
async def get_download_url(
    video_id: str,
    user: User = Depends(get_db_user),
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    """Signed, time-limited download link for a finished video."""
    video = _downloadable(get_user_video(db, user.id, video_id))

    token, expires_at = generate_download_token(
        video.id, user.id, settings.download_token_secret
    )
    return success_response({
        "download_url": (
            f"{settings.api_base_url}/api/videos/{video.id}/download?token={token}"
        ),
        "file_name": _download_name(video),
        "expires_at": isoformat(expires_at),
    })
