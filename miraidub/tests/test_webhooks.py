"""
test_webhooks.py — Replicate & Polar Webhooks over HTTP
=========================================================
"""

import json
import time

import pytest

from miraidub.models import (
    Job, JobStatus, Transaction, TransactionType, User, Video, VideoStatus,
)
from miraidub.tests.conftest import make_job, make_user, make_video, use_settings
from miraidub.utils.webhook_signature import compute_signature

OUTPUT_URL = "https://replicate.delivery/out/dubbed.mp4"


@pytest.fixture
def running(db):
    """An anonymous user's 30 s video, submitted to Replicate as pred-1."""
    user = make_user(db, is_anonymous=True)
    video = make_video(db, user, status=VideoStatus.PROCESSING.value, progress=30)
    job = make_job(
        db, video,
        status=JobStatus.PROCESSING.value,
        current_step="translate",
        progress=30,
        replicate_id="pred-1",
    )
    return user, video, job


def _usage(db, user_id):
    return (
        db.query(Transaction)
        .filter(Transaction.user_id == user_id, Transaction.type == TransactionType.USAGE.value)
        .all()
    )


# ═════════════════════════════════════════════════════════════
# 1. REPLICATE
# ═════════════════════════════════════════════════════════════

class TestReplicateWebhook:

    def test_succeeded_completes_and_settles(self, client, db, running, fake_s3, download_responses):
        user, video, job = running
        download_responses[OUTPUT_URL] = (200, b"dubbed-bytes")

        response = client.post(
            "/api/webhooks/replicate",
            json={"id": "pred-1", "status": "succeeded", "output": OUTPUT_URL},
        )

        assert response.status_code == 200, response.text
        assert response.json()["data"]["credit_source"] == "trial"

        video = db.get(Video, video.id)
        assert video.status == VideoStatus.COMPLETED.value
        assert video.progress == 100
        assert video.translated_key == f"processed/{video.id}/dubbed.mp4"
        assert video.credits_used == 30
        assert fake_s3.objects[video.translated_key] == b"dubbed-bytes"

        job = db.get(Job, job.id)
        assert job.status == JobStatus.COMPLETED.value
        assert job.current_step == "finalize"

        user = db.get(User, user.id)
        assert user.trial_videos_used == 1
        [tx] = _usage(db, user.id)
        assert tx.credits_amount == -30
        assert tx.video_id == video.id

    def test_duplicate_success_settles_once(self, client, db, running, download_responses):
        user, _, _ = running
        download_responses[OUTPUT_URL] = (200, b"dubbed")
        event = {"id": "pred-1", "status": "succeeded", "output": [OUTPUT_URL]}

        assert client.post("/api/webhooks/replicate", json=event).status_code == 200
        second = client.post("/api/webhooks/replicate", json=event)

        assert second.status_code == 200
        assert second.json()["data"]["duplicate"] is True
        assert len(_usage(db, user.id)) == 1

    def test_unknown_duration_charges_a_minute(self, client, db, download_responses):
        user = make_user(db, credits_balance=100)
        video = make_video(db, user, status=VideoStatus.PROCESSING.value, duration_seconds=None)
        make_job(db, video, status=JobStatus.PROCESSING.value, replicate_id="pred-9")
        download_responses[OUTPUT_URL] = (200, b"dubbed")

        client.post(
            "/api/webhooks/replicate",
            json={"id": "pred-9", "status": "succeeded", "output": OUTPUT_URL},
        )

        assert db.get(User, user.id).credits_balance == 40

    def test_success_without_output_fails(self, client, db, running):
        _, video, job = running

        client.post("/api/webhooks/replicate", json={"id": "pred-1", "status": "succeeded"})

        assert db.get(Job, job.id).status == JobStatus.FAILED.value
        video = db.get(Video, video.id)
        assert video.status == VideoStatus.FAILED.value
        assert video.translated_key is None

    def test_download_failure_changes_nothing(self, client, db, running, download_responses):
        user, video, job = running
        download_responses[OUTPUT_URL] = (500, b"")

        response = client.post(
            "/api/webhooks/replicate",
            json={"id": "pred-1", "status": "succeeded", "output": OUTPUT_URL},
        )

        assert response.status_code == 502
        assert response.json()["error"]["code"] == "EXTERNAL_SERVICE_ERROR"
        assert db.get(Job, job.id).status == JobStatus.PROCESSING.value
        assert _usage(db, user.id) == []

    def test_failed_prediction(self, client, db, running):
        _, video, job = running

        client.post(
            "/api/webhooks/replicate",
            json={"id": "pred-1", "status": "failed", "error": "GPU out of memory"},
        )

        job = db.get(Job, job.id)
        assert job.status == JobStatus.FAILED.value
        assert job.error_message == "GPU out of memory"
        assert db.get(Video, video.id).error_message == "GPU out of memory"

    def test_canceled_prediction_fails(self, client, db, running):
        _, _, job = running
        client.post("/api/webhooks/replicate", json={"id": "pred-1", "status": "canceled"})
        assert db.get(Job, job.id).status == JobStatus.FAILED.value

    def test_progress_only_moves_forward(self, client, db, running):
        _, video, job = running

        client.post(
            "/api/webhooks/replicate",
            json={"id": "pred-1", "status": "processing", "logs": "lip sync 20%"},
        )
        client.post(
            "/api/webhooks/replicate",
            json={"id": "pred-1", "status": "processing", "logs": "generating voice"},
        )

        job = db.get(Job, job.id)
        assert job.current_step == "sync"
        assert job.progress == 70
        assert db.get(Video, video.id).progress == 70

    def test_unknown_prediction_is_404(self, client):
        response = client.post(
            "/api/webhooks/replicate", json={"id": "nope", "status": "processing"}
        )
        assert response.status_code == 404
        assert response.json()["error"]["code"] == "NOT_FOUND"

    def test_malformed_payload(self, client):
        response = client.post("/api/webhooks/replicate", json={"id": "x", "status": "weird"})
        assert response.status_code == 400
        assert response.json()["error"]["code"] == "VALIDATION_ERROR"

    def test_signature_enforced_when_configured(self, app, client, db, running):
        secret = "replicate-secret"
        use_settings(app, replicate_webhook_secret=secret)
        body = json.dumps({"id": "pred-1", "status": "processing", "logs": "voice"}).encode()

        unsigned = client.post("/api/webhooks/replicate", content=body)
        assert unsigned.status_code == 400

        timestamp = str(int(time.time()))
        signed = client.post(
            "/api/webhooks/replicate",
            content=body,
            headers={
                "content-type": "application/json",
                "webhook-id": "msg_1",
                "webhook-timestamp": timestamp,
                "webhook-signature": compute_signature(secret, "msg_1", timestamp, body),
            },
        )
        assert signed.status_code == 200


# ═════════════════════════════════════════════════════════════
# 2. POLAR
# ═════════════════════════════════════════════════════════════

def _order(user_id, order_id="order-1", credits=520, **extra):
    data = {
        "id": order_id,
        "customer_id": "cus_1",
        "amount": 2900,
        "metadata": {"userId": user_id, "packageId": "creator", "creditsAmount": credits},
    }
    data.update(extra)
    return {"type": "order.created", "data": data}


class TestPolarWebhook:

    def test_order_credits_user(self, client, db):
        user = make_user(db, credits_balance=0)

        response = client.post("/api/webhooks/polar", json=_order(user.id))

        assert response.status_code == 200
        user = db.get(User, user.id)
        assert user.credits_balance == 520
        assert user.polar_customer_id == "cus_1"

        [tx] = db.query(Transaction).filter(Transaction.user_id == user.id).all()
        assert tx.type == TransactionType.PURCHASE.value
        assert tx.credits_amount == 520
        assert tx.balance_after == 520
        assert tx.polar_order_id == "order-1"

    def test_repeated_order_is_ignored(self, client, db):
        user = make_user(db)

        client.post("/api/webhooks/polar", json=_order(user.id))
        response = client.post("/api/webhooks/polar", json=_order(user.id))

        assert response.json()["data"]["handled"] is False
        assert db.get(User, user.id).credits_balance == 520
        assert db.query(Transaction).count() == 1

    def test_string_credit_amount(self, client, db):
        user = make_user(db)
        client.post("/api/webhooks/polar", json=_order(user.id, credits="1800"))
        assert db.get(User, user.id).credits_balance == 1800

    def test_bad_metadata_is_acknowledged(self, client, db):
        user = make_user(db)

        response = client.post(
            "/api/webhooks/polar",
            json={"type": "order.created", "data": {"id": "order-2", "metadata": {"userId": user.id}}},
        )

        assert response.status_code == 200
        assert response.json()["data"]["handled"] is False
        assert db.query(Transaction).count() == 0

    def test_unknown_user_is_acknowledged(self, client, db):
        response = client.post("/api/webhooks/polar", json=_order("ghost"))
        assert response.status_code == 200
        assert response.json()["data"]["handled"] is False

    def test_unhandled_event_type(self, client):
        response = client.post("/api/webhooks/polar", json={"type": "checkout.updated", "data": {}})
        assert response.status_code == 200
        assert response.json()["data"] == {"received": True, "handled": False}

    def test_subscription_lifecycle(self, client, db):
        user = make_user(db)
        subscription = {"id": "sub_1", "customer_id": "cus_9", "metadata": {"userId": user.id}}

        client.post("/api/webhooks/polar", json={"type": "subscription.created", "data": subscription})
        user = db.get(User, user.id)
        assert user.plan == "pro"
        assert user.polar_subscription_id == "sub_1"

        client.post("/api/webhooks/polar", json={"type": "subscription.canceled", "data": subscription})
        user = db.get(User, user.id)
        assert user.plan == "free"
        assert user.polar_subscription_id is None

    def test_invalid_json(self, client):
        response = client.post(
            "/api/webhooks/polar", content=b"not json",
            headers={"content-type": "application/json"},
        )
        assert response.status_code == 400

    def test_invalid_signature_rejected(self, app, client, db):
        use_settings(app, polar_webhook_secret="polar-secret")
        user = make_user(db)

        response = client.post(
            "/api/webhooks/polar",
            json=_order(user.id),
            headers={"webhook-id": "m", "webhook-timestamp": str(int(time.time())),
                     "webhook-signature": "v1,forged"},
        )

        assert response.status_code == 400
        assert db.get(User, user.id).credits_balance == 0
