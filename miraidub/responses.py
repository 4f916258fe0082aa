"""Success envelopes and the JSON shapes of our models, shared by all routers."""

from typing import Any, List, Optional

from miraidub.config import TRIAL_VIDEO_LIMIT
from miraidub.services.credit_ledger import has_trial
from miraidub.services.job_steps import estimated_seconds_remaining, project_steps
from miraidub.utils.storage import public_url


def success_response(data: Any) -> dict:
    return {"success": True, "data": data}


def paginated_response(items: List[Any], total: int, page: int, page_size: int) -> dict:
    return success_response({
        "items": items,
        "total": total,
        "page": page,
        "page_size": page_size,
        "has_more": page * page_size < total,
    })


def isoformat(value) -> Any:
    return value.isoformat() if value else None


def _url(key: Optional[str], base_url: str) -> Optional[str]:
    return public_url(key, base_url) if key else None


def serialize_user(user) -> dict:
    return {
        "id": user.id,
        "email": user.email,
        "name": user.name,
        "image": user.image,
        "is_anonymous": user.is_anonymous,
        "plan": user.plan,
        "credits_balance": user.credits_balance,
        "trial_videos_used": user.trial_videos_used,
        "trial_videos_remaining": (
            TRIAL_VIDEO_LIMIT - user.trial_videos_used if has_trial(user) else 0
        ),
        "bonus_videos_available": user.bonus_videos_available,
        "created_at": isoformat(user.created_at),
        "updated_at": isoformat(user.updated_at),
    }


def serialize_job(job) -> dict:
    return {
        "id": job.id,
        "video_id": job.video_id,
        "status": job.status,
        "progress": job.progress,
        "current_step": job.current_step,
        "steps": project_steps(job.current_step, job.status),
        "estimated_seconds_remaining": estimated_seconds_remaining(
            job.current_step, job.status
        ),
        "error_message": job.error_message,
        "retry_count": job.retry_count,
        "created_at": isoformat(job.created_at),
        "started_at": isoformat(job.started_at),
        "completed_at": isoformat(job.completed_at),
    }


def serialize_video(video, base_url: str, job=None) -> dict:
    data = {
        "id": video.id,
        "title": video.title,
        "source_language": video.source_language,
        "target_language": video.target_language,
        "duration_seconds": video.duration_seconds,
        "file_size_bytes": video.file_size_bytes,
        "mime_type": video.mime_type,
        "status": video.status,
        "progress": video.progress,
        "error_message": video.error_message,
        "credits_used": video.credits_used,
        "thumbnail_url": _url(video.thumbnail_key, base_url),
        "preview_url": _url(video.preview_key, base_url),
        "translated_url": _url(video.translated_key, base_url),
        "created_at": isoformat(video.created_at),
        "updated_at": isoformat(video.updated_at),
        "completed_at": isoformat(video.completed_at),
    }
    if job is not None:
        data["job"] = serialize_job(job)
    return data


def serialize_transaction(tx) -> dict:
    return {
        "id": tx.id,
        "type": tx.type,
        "credits_amount": tx.credits_amount,
        "balance_after": tx.balance_after,
        "credit_source": tx.credit_source,
        "video_id": tx.video_id,
        "description": tx.description,
        "metadata": tx.details,
        "created_at": isoformat(tx.created_at),
    }
