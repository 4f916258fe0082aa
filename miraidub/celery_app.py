"""
celery_app.py — Celery Configuration
======================================

Configures Celery with Redis as broker for the video processing queue.

Usage:
    # Start worker:
    celery -A miraidub.celery_app worker --loglevel=info

    # Submissions are I/O-bound (one HTTP call each), so concurrency can be high:
    celery -A miraidub.celery_app worker --loglevel=info --concurrency=8
"""

import os
from celery import Celery

REDIS_URL = os.getenv("REDIS_URL", "redis://localhost:6379/0")

# Create Celery instance
celery_app = Celery(
    "miraidub",
    broker=REDIS_URL,
    backend=REDIS_URL,
    include=["miraidub.services.tasks"],
)

# Configuration
celery_app.conf.update(
    # Serialization
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",

    # Timezone
    timezone="UTC",
    enable_utc=True,

    # Delivery: a message is only removed once the consumer has decided
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    worker_prefetch_multiplier=1,

    # Task settings
    task_track_started=True,
    task_time_limit=120,              # one Replicate call, well under the limit
    task_soft_time_limit=90,

    # Result backend
    result_expires=3600,              # results expire after 1 hour
)
