"""
upload.py — Video Upload Router
=================================

Handles:
  POST   /api/upload/initiate            — validate, create Video, open multipart upload
  PUT    /api/upload/{video_id}/chunk    — raw chunk body, X-Part-Number header
  POST   /api/upload/{video_id}/complete — assemble, create Job, queue processing
  PUT    /api/upload/{video_id}/thumbnail — raw image body
  DELETE /api/upload/{video_id}/abort    — cancel an unfinished upload
"""

import logging

from fastapi import APIRouter, Depends, Header, Request
from sqlalchemy.orm import Session

from miraidub.config import Settings, get_settings
from miraidub.database import get_db
from miraidub.middleware.auth_middleware import get_db_user
from miraidub.models import User
from miraidub.responses import serialize_job, serialize_video, success_response
from miraidub.schemas import UploadInitiateRequest
from miraidub.services.tasks import get_enqueue
from miraidub.services.upload_service import UploadOrchestrator

logger = logging.getLogger(__name__)
router = APIRouter()


def get_upload_service(
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
    enqueue=Depends(get_enqueue),
) -> UploadOrchestrator:
    return UploadOrchestrator(db, settings, enqueue)


@router.post("/upload/initiate")
async def initiate_upload(
    req: UploadInitiateRequest,
    user: User = Depends(get_db_user),
    uploads: UploadOrchestrator = Depends(get_upload_service),
):
    """
    Start an upload.

    Rejects the request before anything is stored when the user cannot
    pay for the video, the file is too big, or the format is unsupported.
    """
    return success_response(uploads.initiate(user, req))


@router.put("/upload/{video_id}/chunk")
async def upload_chunk(
    video_id: str,
    request: Request,
    part_number: int = Header(..., alias="X-Part-Number"),
    user: User = Depends(get_db_user),
    uploads: UploadOrchestrator = Depends(get_upload_service),
):
    body = await request.body()
    etag = uploads.put_part(user.id, video_id, part_number, body)
    return success_response({"part_number": part_number, "etag": etag})


@router.post("/upload/{video_id}/complete")
async def complete_upload(
    video_id: str,
    user: User = Depends(get_db_user),
    uploads: UploadOrchestrator = Depends(get_upload_service),
):
    video, job = uploads.complete(user.id, video_id)
    return success_response({
        "video": serialize_video(video, uploads.settings.r2_public_url),
        "job": serialize_job(job),
    })


@router.put("/upload/{video_id}/thumbnail")
async def upload_thumbnail(
    video_id: str,
    request: Request,
    user: User = Depends(get_db_user),
    uploads: UploadOrchestrator = Depends(get_upload_service),
):
    content_type = request.headers.get("content-type", "").split(";")[0].strip()
    body = await request.body()
    key = uploads.store_thumbnail(user.id, video_id, body, content_type)
    return success_response({
        "video_id": video_id,
        "thumbnail_key": key,
    })


@router.delete("/upload/{video_id}/abort")
async def abort_upload(
    video_id: str,
    user: User = Depends(get_db_user),
    uploads: UploadOrchestrator = Depends(get_upload_service),
):
    uploads.abort(user.id, video_id)
    return success_response({"video_id": video_id, "aborted": True})
