"""
jobs.py — Job Status Router
=============================

Handles:
  GET /api/jobs/{job_id}           — job status with projected steps
  GET /api/jobs/video/{video_id}   — latest job of a video
"""

import logging

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from miraidub.database import get_db
from miraidub.errors import not_found
from miraidub.middleware.auth_middleware import get_db_user
from miraidub.models import Job, User, Video
from miraidub.responses import serialize_job, success_response
from miraidub.services.upload_service import get_user_video

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("/jobs/video/{video_id}")
async def get_latest_job(
    video_id: str,
    user: User = Depends(get_db_user),
    db: Session = Depends(get_db),
):
    """Most recent processing job of one of the user's videos."""
    get_user_video(db, user.id, video_id)

    job = (
        db.query(Job)
        .filter(Job.video_id == video_id)
        .order_by(Job.created_at.desc())
        .first()
    )
    if not job:
        raise not_found("Job")

    return success_response(serialize_job(job))


@router.get("/jobs/{job_id}")
async def get_job(
    job_id: str,
    user: User = Depends(get_db_user),
    db: Session = Depends(get_db),
):
    """Get the status of a specific job."""
    job = (
        db.query(Job)
        .join(Video, Job.video_id == Video.id)
        .filter(Job.id == job_id, Video.user_id == user.id)
        .first()
    )
    if not job:
        raise not_found("Job")

    return success_response(serialize_job(job))
