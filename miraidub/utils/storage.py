"""
storage.py — Cloudflare R2 Storage Utilities
=============================================

Handles object storage for source uploads, dubbed results and
thumbnails.  R2 speaks the S3 API, so everything goes through boto3
with a custom endpoint.

Configure via environment variables (see config.Settings):
  S3_BUCKET             — bucket name
  S3_ENDPOINT           — https://<account>.r2.cloudflarestorage.com
  S3_REGION             — "auto" for R2
  AWS_ACCESS_KEY_ID     — R2 access key
  AWS_SECRET_ACCESS_KEY — R2 secret key
  R2_PUBLIC_URL         — public domain bound to the bucket
"""

import logging
from typing import Iterator, List, Optional

import boto3
from botocore.config import Config
from botocore.exceptions import ClientError

from miraidub.config import (
    PROCESSED_PREFIX, THUMBNAILS_PREFIX, UPLOADS_PREFIX,
    get_settings,
)

logger = logging.getLogger(__name__)


def _get_s3_client():
    """Create a boto3 S3 client pointed at R2."""
    settings = get_settings()

    kwargs = {
        "region_name": settings.s3_region,
        "config": Config(signature_version="s3v4", retries={"max_attempts": 3}),
    }
    if settings.s3_endpoint:
        kwargs["endpoint_url"] = settings.s3_endpoint

    return boto3.client("s3", **kwargs)


def _bucket() -> str:
    return get_settings().s3_bucket


# ─────────────────────────────────────────────────────────────
# Keys & URLs
# ─────────────────────────────────────────────────────────────

def upload_key(user_id: str, video_id: str, extension: str) -> str:
    return f"{UPLOADS_PREFIX}/{user_id}/{video_id}/original.{extension}"


def processed_key(video_id: str) -> str:
    return f"{PROCESSED_PREFIX}/{video_id}/dubbed.mp4"


def thumbnail_key(video_id: str) -> str:
    return f"{THUMBNAILS_PREFIX}/{video_id}/thumb.jpg"


def public_url(key: str, base_url: Optional[str] = None) -> str:
    """URL of an object on the bucket's public domain."""
    if base_url is None:
        base_url = get_settings().r2_public_url
    return f"{base_url.rstrip('/')}/{key}"


# ─────────────────────────────────────────────────────────────
# Multipart upload
# ─────────────────────────────────────────────────────────────

def create_multipart_upload(key: str, content_type: str) -> str:
    """Open a multipart upload session and return its upload id."""
    client = _get_s3_client()
    response = client.create_multipart_upload(
        Bucket=_bucket(), Key=key, ContentType=content_type
    )
    logger.info(f"Multipart upload opened: {key}")
    return response["UploadId"]


def upload_part(key: str, upload_id: str, part_number: int, body: bytes) -> str:
    """Upload one chunk and return its ETag."""
    client = _get_s3_client()
    response = client.upload_part(
        Bucket=_bucket(),
        Key=key,
        UploadId=upload_id,
        PartNumber=part_number,
        Body=body,
    )
    return response["ETag"]


def complete_multipart_upload(key: str, upload_id: str, parts: List[dict]) -> None:
    """
    Assemble the uploaded parts into the final object.

    Args:
        key:       Object key of the upload.
        upload_id: Id returned by create_multipart_upload.
        parts:     [{"part_number": 1, "etag": "..."}, ...] sorted by part number.
    """
    client = _get_s3_client()
    client.complete_multipart_upload(
        Bucket=_bucket(),
        Key=key,
        UploadId=upload_id,
        MultipartUpload={
            "Parts": [
                {"PartNumber": part["part_number"], "ETag": part["etag"]}
                for part in parts
            ]
        },
    )
    logger.info(f"Multipart upload completed: {key} ({len(parts)} parts)")


def abort_multipart_upload(key: str, upload_id: str) -> None:
    client = _get_s3_client()
    client.abort_multipart_upload(Bucket=_bucket(), Key=key, UploadId=upload_id)
    logger.info(f"Multipart upload aborted: {key}")


# ─────────────────────────────────────────────────────────────
# Whole objects
# ─────────────────────────────────────────────────────────────

def put_object(key: str, body: bytes, content_type: str) -> str:
    """Store bytes under a key and return the key."""
    client = _get_s3_client()

    logger.info(f"Uploading {len(body)} bytes → s3://{_bucket()}/{key}")
    client.put_object(Bucket=_bucket(), Key=key, Body=body, ContentType=content_type)

    return key


def object_size(key: str) -> Optional[int]:
    """Size of an object in bytes, or None if it does not exist."""
    client = _get_s3_client()
    try:
        response = client.head_object(Bucket=_bucket(), Key=key)
    except ClientError as e:
        error_code = e.response.get("Error", {}).get("Code", "")
        if error_code in ("404", "NoSuchKey", "NotFound"):
            return None
        raise
    return response.get("ContentLength")


def stream_object(key: str, chunk_size: int = 1024 * 1024) -> Iterator[bytes]:
    """Yield an object's bytes in chunks."""
    client = _get_s3_client()
    response = client.get_object(Bucket=_bucket(), Key=key)
    body = response["Body"]
    try:
        yield from body.iter_chunks(chunk_size=chunk_size)
    finally:
        body.close()


def delete_objects(keys: List[str]) -> None:
    """Delete several objects in one request. Failures are logged, not raised."""
    if not keys:
        return

    client = _get_s3_client()
    try:
        response = client.delete_objects(
            Bucket=_bucket(),
            Delete={"Objects": [{"Key": key} for key in keys], "Quiet": True},
        )
    except ClientError as e:
        logger.error(f"Failed to delete {keys}: {e}")
        return

    for error in response.get("Errors", []):
        logger.error(f"Failed to delete s3://{_bucket()}/{error.get('Key')}: {error.get('Message')}")
    logger.info(f"Deleted {len(keys)} object(s) from s3://{_bucket()}")
