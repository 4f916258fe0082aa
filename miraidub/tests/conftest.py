"""
conftest.py — Shared Test Fixtures
====================================

Everything runs in-process: an in-memory SQLite database, a fake S3
client patched over the storage module, a stub Replicate client and
``httpx.MockTransport`` for result downloads.  No Redis, network or
bucket is needed.
"""

from dataclasses import replace

import httpx
import jwt
import pytest
from botocore.exceptions import ClientError
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from miraidub import models  # noqa: F401
from miraidub.config import Settings, get_settings
from miraidub.database import Base, enable_sqlite_foreign_keys, get_db
from miraidub.models import Job, JobStatus, ProcessingStep, User, Video, VideoStatus
from miraidub.services.replicate_client import Prediction
from miraidub.utils import storage

AUTH_SECRET = "test-auth-secret-0123456789abcdef0123456789"

TEST_SETTINGS = Settings(
    environment="test",
    api_base_url="http://testserver",
    auth_secret=AUTH_SECRET,
    download_token_secret="test-download-secret",
    r2_public_url="https://cdn.example.com",
    s3_bucket="test-bucket",
    replicate_api_token="r8_test",
    polar_access_token="polar_test",
    polar_product_ids={
        "starter": "prod_starter",
        "creator": "prod_creator",
        "pro": "prod_pro",
        "enterprise": "prod_enterprise",
    },
)


# ═════════════════════════════════════════════════════════════
# FAKES
# ═════════════════════════════════════════════════════════════

class FakeBody:
    def __init__(self, data: bytes):
        self.data = data
        self.closed = False

    def iter_chunks(self, chunk_size=1024):
        for start in range(0, len(self.data), chunk_size):
            yield self.data[start:start + chunk_size]

    def close(self):
        self.closed = True


class FakeS3:
    """The subset of the boto3 S3 client the storage module calls."""

    def __init__(self):
        self.objects = {}
        self.uploads = {}
        self.aborted = []
        self.deleted = []

    def create_multipart_upload(self, Bucket, Key, ContentType):
        upload_id = f"upload-{len(self.uploads) + len(self.aborted) + 1}"
        self.uploads[upload_id] = {"key": Key, "parts": {}}
        return {"UploadId": upload_id}

    def upload_part(self, Bucket, Key, UploadId, PartNumber, Body):
        self.uploads[UploadId]["parts"][PartNumber] = Body
        return {"ETag": f'"etag-{PartNumber}"'}

    def complete_multipart_upload(self, Bucket, Key, UploadId, MultipartUpload):
        upload = self.uploads.pop(UploadId)
        self.objects[Key] = b"".join(
            upload["parts"][part["PartNumber"]] for part in MultipartUpload["Parts"]
        )
        return {}

    def abort_multipart_upload(self, Bucket, Key, UploadId):
        self.uploads.pop(UploadId, None)
        self.aborted.append(Key)
        return {}

    def put_object(self, Bucket, Key, Body, ContentType):
        self.objects[Key] = Body
        return {}

    def head_object(self, Bucket, Key):
        if Key not in self.objects:
            raise ClientError({"Error": {"Code": "404", "Message": "Not Found"}}, "HeadObject")
        return {"ContentLength": len(self.objects[Key])}

    def get_object(self, Bucket, Key):
        return {"Body": FakeBody(self.objects[Key])}

    def delete_objects(self, Bucket, Delete):
        for obj in Delete["Objects"]:
            self.objects.pop(obj["Key"], None)
            self.deleted.append(obj["Key"])
        return {}


class StubReplicate:
    """Records prediction requests; optionally fails them."""

    def __init__(self, error=None, prediction_id="pred-1"):
        self.error = error
        self.prediction_id = prediction_id
        self.calls = []

    def create_translation_prediction(self, video_url, output_language, webhook_url):
        self.calls.append({
            "video_url": video_url,
            "output_language": output_language,
            "webhook_url": webhook_url,
        })
        if self.error is not None:
            raise self.error
        return Prediction(id=self.prediction_id, status="starting")


# ═════════════════════════════════════════════════════════════
# FIXTURES
# ═════════════════════════════════════════════════════════════

@pytest.fixture
def settings():
    return TEST_SETTINGS


@pytest.fixture
def db():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    enable_sqlite_foreign_keys(engine)
    Base.metadata.create_all(bind=engine)

    session = sessionmaker(bind=engine, autoflush=False)()
    try:
        yield session
    finally:
        session.close()
        engine.dispose()


@pytest.fixture
def fake_s3(monkeypatch):
    fake = FakeS3()
    monkeypatch.setattr(storage, "_get_s3_client", lambda: fake)
    return fake


@pytest.fixture
def enqueued():
    """Messages the API put on the processing queue."""
    return []


@pytest.fixture
def download_responses():
    """URL → (status, body) served to webhook result downloads."""
    return {}


@pytest.fixture
def app(db, fake_s3, enqueued, download_responses):
    from miraidub.main import app as fastapi_app
    from miraidub.routers.webhooks import get_download_transport
    from miraidub.services.tasks import get_enqueue

    def _get_db():
        yield db

    def _download(request: httpx.Request) -> httpx.Response:
        status, body = download_responses.get(str(request.url), (404, b""))
        return httpx.Response(status, content=body)

    fastapi_app.dependency_overrides[get_db] = _get_db
    fastapi_app.dependency_overrides[get_settings] = lambda: TEST_SETTINGS
    fastapi_app.dependency_overrides[get_enqueue] = lambda: enqueued.append
    fastapi_app.dependency_overrides[get_download_transport] = (
        lambda: httpx.MockTransport(_download)
    )
    try:
        yield fastapi_app
    finally:
        fastapi_app.dependency_overrides.clear()


@pytest.fixture
def client(app):
    return TestClient(app)


def use_settings(app, **changes):
    """Override settings for the rest of one test."""
    app.dependency_overrides[get_settings] = lambda: replace(TEST_SETTINGS, **changes)


# ═════════════════════════════════════════════════════════════
# FACTORIES
# ═════════════════════════════════════════════════════════════

def make_token(user_id, email=None, anonymous=None, name="Test User", secret=AUTH_SECRET, **claims):
    payload = {"sub": user_id, "name": name}
    if email:
        payload["email"] = email
    payload["is_anonymous"] = (not email) if anonymous is None else anonymous
    payload.update(claims)
    return jwt.encode(payload, secret, algorithm="HS256")


def auth_header(user_id, email=None, **kwargs):
    return {"Authorization": f"Bearer {make_token(user_id, email, **kwargs)}"}


def make_user(db, user_id="user-1", **fields):
    defaults = {
        "id": user_id,
        "is_anonymous": False,
        "email": f"{user_id}@example.com",
        "trial_videos_used": 0,
        "bonus_videos_available": 0,
        "credits_balance": 0.0,
    }
    defaults.update(fields)
    if defaults["is_anonymous"] and "email" not in fields:
        defaults["email"] = None
    user = User(**defaults)
    db.add(user)
    db.commit()
    return user


def make_video(db, user, status=VideoStatus.QUEUED.value, **fields):
    defaults = {
        "user_id": user.id,
        "title": "Holiday clip",
        "source_language": "en",
        "target_language": "es",
        "duration_seconds": 30,
        "file_size_bytes": 1024,
        "mime_type": "video/mp4",
        "status": status,
    }
    defaults.update(fields)
    video = Video(**defaults)
    db.add(video)
    db.flush()
    if "original_key" not in fields:
        video.original_key = storage.upload_key(user.id, video.id, "mp4")
    db.commit()
    return video


def make_job(db, video, status=JobStatus.PENDING.value, **fields):
    defaults = {
        "video_id": video.id,
        "status": status,
        "current_step": ProcessingStep.UPLOAD.value,
        "progress": 0,
    }
    defaults.update(fields)
    job = Job(**defaults)
    db.add(job)
    db.commit()
    return job
