"""
models.py — SQLAlchemy Database Models
=======================================

Defines the data schema for the dubbing service:
  • User        — identity, plan and credit counters
  • Video       — one uploaded asset and its lifecycle
  • Job         — one processing attempt of a Video
  • Transaction — append-only credit ledger entry
"""

import uuid
from datetime import datetime, timezone
from sqlalchemy import (
    Boolean, Column, String, Integer, Float, Text, DateTime,
    ForeignKey, JSON,
)
from sqlalchemy.orm import relationship
from miraidub.database import Base

import enum


def _now():
    return datetime.now(timezone.utc)


def _new_id():
    return uuid.uuid4().hex


# ─────────────────────────────────────────────────────────────
# Enums
# ─────────────────────────────────────────────────────────────

class VideoStatus(str, enum.Enum):
    UPLOADING = "uploading"
    QUEUED = "queued"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class JobStatus(str, enum.Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class ProcessingStep(str, enum.Enum):
    UPLOAD = "upload"
    ANALYZE = "analyze"
    TRANSLATE = "translate"
    VOICE = "voice"
    SYNC = "sync"
    FINALIZE = "finalize"


class TransactionType(str, enum.Enum):
    PURCHASE = "purchase"
    USAGE = "usage"
    REFUND = "refund"
    BONUS = "bonus"
    SUBSCRIPTION = "subscription"


class CreditSource(str, enum.Enum):
    CREDITS = "credits"
    TRIAL = "trial"
    BONUS = "bonus"


class PlanType(str, enum.Enum):
    FREE = "free"
    PRO = "pro"
    ENTERPRISE = "enterprise"


# ─────────────────────────────────────────────────────────────
# User
# ─────────────────────────────────────────────────────────────

class User(Base):
    __tablename__ = "users"

    id = Column(String, primary_key=True, default=_new_id)
    email = Column(String, unique=True, nullable=True, index=True)
    email_verified = Column(Boolean, default=False, nullable=False)
    name = Column(String, nullable=True)
    image = Column(String, nullable=True)
    is_anonymous = Column(Boolean, default=True, nullable=False)

    # Credits and free entitlements
    trial_videos_used = Column(Integer, default=0, nullable=False)
    bonus_videos_available = Column(Integer, default=0, nullable=False)
    credits_balance = Column(Float, default=0.0, nullable=False)  # seconds

    # Billing
    plan = Column(String, default=PlanType.FREE.value, nullable=False)
    polar_customer_id = Column(String, nullable=True)
    polar_subscription_id = Column(String, nullable=True)

    # Timestamps
    created_at = Column(DateTime, default=_now)
    updated_at = Column(DateTime, default=_now, onupdate=_now)

    # Relationships
    videos = relationship("Video", back_populates="user", lazy="dynamic")
    transactions = relationship("Transaction", back_populates="user", lazy="dynamic")

    def __repr__(self):
        return f"<User {self.id[:8]} plan={self.plan} credits={self.credits_balance}>"


# ─────────────────────────────────────────────────────────────
# Video
# ─────────────────────────────────────────────────────────────

class Video(Base):
    __tablename__ = "videos"

    id = Column(String, primary_key=True, default=_new_id)
    user_id = Column(
        String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )

    # Metadata
    title = Column(String, nullable=False)
    source_language = Column(String, nullable=False)
    target_language = Column(String, nullable=False)
    duration_seconds = Column(Integer, nullable=True)
    file_size_bytes = Column(Integer, nullable=True)
    mime_type = Column(String, nullable=True)

    # Object storage keys
    original_key = Column(String, nullable=True)
    translated_key = Column(String, nullable=True)
    thumbnail_key = Column(String, nullable=True)
    preview_key = Column(String, nullable=True)

    # Status tracking
    status = Column(String, default=VideoStatus.UPLOADING.value, nullable=False, index=True)
    progress = Column(Integer, default=0, nullable=False)  # 0-100 percentage
    error_message = Column(Text, nullable=True)

    # Multipart upload tracking, only set while status == uploading
    upload_id = Column(String, nullable=True)
    uploaded_parts = Column(JSON, nullable=True)

    credits_used = Column(Float, default=0.0, nullable=False)

    # Timestamps
    created_at = Column(DateTime, default=_now, index=True)
    updated_at = Column(DateTime, default=_now, onupdate=_now)
    completed_at = Column(DateTime, nullable=True)

    # Relationships
    user = relationship("User", back_populates="videos")
    jobs = relationship(
        "Job",
        back_populates="video",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="Job.created_at",
    )

    def __repr__(self):
        return f"<Video {self.id[:8]} status={self.status}>"


# ─────────────────────────────────────────────────────────────
# Job
# ─────────────────────────────────────────────────────────────

class Job(Base):
    __tablename__ = "jobs"

    id = Column(String, primary_key=True, default=_new_id)
    video_id = Column(
        String, ForeignKey("videos.id", ondelete="CASCADE"), nullable=False, index=True
    )

    # Replicate prediction handle
    replicate_id = Column(String, nullable=True, index=True)

    # Status tracking
    status = Column(String, default=JobStatus.PENDING.value, nullable=False, index=True)
    progress = Column(Integer, default=0, nullable=False)
    current_step = Column(String, default=ProcessingStep.UPLOAD.value, nullable=False)

    # Error handling
    error_message = Column(Text, nullable=True)
    retry_count = Column(Integer, default=0, nullable=False)
    max_retries = Column(Integer, default=3, nullable=False)

    # Timestamps
    created_at = Column(DateTime, default=_now)
    updated_at = Column(DateTime, default=_now, onupdate=_now)
    started_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)

    # Relationships
    video = relationship("Video", back_populates="jobs")

    def __repr__(self):
        return f"<Job {self.id[:8]} status={self.status} step={self.current_step}>"


# ─────────────────────────────────────────────────────────────
# Transaction
# ─────────────────────────────────────────────────────────────

class Transaction(Base):
    __tablename__ = "transactions"

    id = Column(String, primary_key=True, default=_new_id)
    user_id = Column(
        String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )

    type = Column(String, nullable=False, index=True)
    credits_amount = Column(Float, nullable=False)  # positive = add, negative = deduct
    balance_after = Column(Float, nullable=False)
    credit_source = Column(String, default=CreditSource.CREDITS.value, nullable=False)

    # References
    video_id = Column(String, ForeignKey("videos.id", ondelete="SET NULL"), nullable=True)
    polar_order_id = Column(String, unique=True, nullable=True)

    description = Column(String, nullable=True)
    details = Column("metadata", JSON, nullable=True)

    created_at = Column(DateTime, default=_now, index=True)

    # Relationships
    user = relationship("User", back_populates="transactions")

    def __repr__(self):
        return f"<Transaction {self.id[:8]} {self.type} {self.credits_amount:+}>"
