"""
config.py — Central Configuration for the Mirai Dub API
========================================================

All tuneable constants live here so they can be adjusted without
touching business logic.  Values are grouped by subsystem.

Deployment-specific values (URLs, secrets, bucket names) are read from
the environment into a frozen ``Settings`` object.  Routes receive it via
``Depends(get_settings)``; services and Celery tasks get it passed in.
"""

import os
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Dict, List, Tuple


# ─────────────────────────────────────────────────────────────
# 1. UPLOAD LIMITS
# ─────────────────────────────────────────────────────────────

# Max source video size: 500 MB
MAX_UPLOAD_BYTES = 500 * 1024 * 1024

# Longest video we accept at all (60 minutes)
MAX_DURATION_SECONDS = 60 * 60

# Rough bitrate used to guess a duration when the client sends none
ESTIMATED_BYTES_PER_MINUTE = 10 * 1024 * 1024

# Videos longer than this need purchased credits (free tier = 1 minute)
FREE_TIER_MAX_SECONDS = 60

SUPPORTED_MIME_TYPES: Dict[str, str] = {
    "video/mp4": "mp4",
    "video/quicktime": "mov",
    "video/webm": "webm",
    "video/x-msvideo": "avi",
}

THUMBNAIL_MIME_TYPES = {"image/jpeg", "image/png", "image/webp"}

MAX_THUMBNAIL_BYTES = 5 * 1024 * 1024

# S3 multipart part numbers run 1..10000
MAX_PART_NUMBER = 10_000


# ─────────────────────────────────────────────────────────────
# 2. CREDITS
# ─────────────────────────────────────────────────────────────

# 1 credit = 1 second of processed video

# Anonymous users get exactly one free trial video
TRIAL_VIDEO_LIMIT = 1

# Bonus videos granted when a full account is created or converted
SIGNUP_BONUS_VIDEOS = 2

# Charged when the duration of a finished video is unknown
DEFAULT_USAGE_SECONDS = 60

CREDIT_PACKAGES: Dict[str, dict] = {
    "starter": {
        "name": "Starter",
        "seconds": 30 * 60,
        "price": 9,
        "popular": False,
        "product_env": "POLAR_STARTER_PRODUCT_ID",
    },
    "creator": {
        "name": "Creator",
        "seconds": 120 * 60,
        "price": 29,
        "popular": True,
        "product_env": "POLAR_CREATOR_PRODUCT_ID",
    },
    "pro": {
        "name": "Pro",
        "seconds": 300 * 60,
        "price": 59,
        "popular": False,
        "product_env": "POLAR_PRO_PRODUCT_ID",
    },
    "enterprise": {
        "name": "Enterprise",
        "seconds": 1000 * 60,
        "price": 149,
        "popular": False,
        "product_env": "POLAR_ENTERPRISE_PRODUCT_ID",
    },
}


# ─────────────────────────────────────────────────────────────
# 3. PROCESSING PIPELINE
# ─────────────────────────────────────────────────────────────

# Fixed step order; drives progress percentages and the UI step list
PROCESSING_STEPS: Tuple[str, ...] = (
    "upload",
    "analyze",
    "translate",
    "voice",
    "sync",
    "finalize",
)

# Queue delivery attempts before a job is failed for good
MAX_PROCESSING_ATTEMPTS = 3

# Retry delay = RETRY_BASE_DELAY_S * 2 ** attempts
RETRY_BASE_DELAY_S = 30

# Rough per-step estimate shown to the user
SECONDS_PER_STEP_ESTIMATE = 30

# Language codes accepted from the client
SUPPORTED_LANGUAGES: Dict[str, str] = {
    "auto": "Auto",
    "en": "English",
    "es": "Spanish",
    "fr": "French",
    "de": "German",
    "it": "Italian",
    "pt": "Portuguese",
    "ja": "Japanese",
    "zh": "Chinese",
    "ko": "Korean",
    "ar": "Arabic",
    "hi": "Hindi",
    "ru": "Russian",
    "nl": "Dutch",
    "pl": "Polish",
    "tr": "Turkish",
    "vi": "Vietnamese",
    "th": "Thai",
    "id": "Indonesian",
    "sv": "Swedish",
}


# ─────────────────────────────────────────────────────────────
# 4. STORAGE KEYS
# ─────────────────────────────────────────────────────────────

UPLOADS_PREFIX = "uploads"
PROCESSED_PREFIX = "processed"
THUMBNAILS_PREFIX = "thumbnails"


# ─────────────────────────────────────────────────────────────
# 5. DOWNLOAD LINKS
# ─────────────────────────────────────────────────────────────

# Signed download links stay valid for 7 days
DOWNLOAD_TOKEN_TTL_S = 7 * 24 * 60 * 60


# ─────────────────────────────────────────────────────────────
# 6. ENVIRONMENT  (secrets, URLs, external services)
# ─────────────────────────────────────────────────────────────

def _split_csv(value: str) -> List[str]:
    return [item.strip() for item in value.split(",") if item.strip()]


@dataclass(frozen=True)
class Settings:
    """Deployment settings, read once from the environment."""

    environment: str = "development"
    api_base_url: str = "http://localhost:8000"
    app_scheme: str = "miraidub"
    log_level: str = "INFO"
    cors_origins: List[str] = field(default_factory=lambda: [
        "http://localhost:8081",
        "http://localhost:19006",
    ])

    # Session JWTs are issued by the auth service with this secret
    auth_secret: str = "change-me-in-production"
    download_token_secret: str = "change-me-in-production"

    # Cloudflare R2 (S3 API)
    r2_public_url: str = ""
    s3_bucket: str = "miraidub-videos"
    s3_endpoint: str = ""
    s3_region: str = "auto"

    # Replicate
    replicate_api_token: str = ""
    replicate_api_url: str = "https://api.replicate.com/v1"
    replicate_model: str = "heygen/video-translate"
    replicate_webhook_secret: str = ""

    # Polar
    polar_access_token: str = ""
    polar_webhook_secret: str = ""
    polar_product_ids: Dict[str, str] = field(default_factory=dict)

    http_timeout_seconds: float = 30.0

    @classmethod
    def from_env(cls) -> "Settings":
        defaults = cls()
        return cls(
            environment=os.getenv("ENVIRONMENT", defaults.environment),
            api_base_url=os.getenv("API_BASE_URL", defaults.api_base_url).rstrip("/"),
            app_scheme=os.getenv("APP_SCHEME", defaults.app_scheme),
            log_level=os.getenv("LOG_LEVEL", defaults.log_level),
            cors_origins=_split_csv(os.getenv("CORS_ORIGINS", ""))
            or defaults.cors_origins,
            auth_secret=os.getenv("AUTH_SECRET", defaults.auth_secret),
            download_token_secret=os.getenv(
                "DOWNLOAD_TOKEN_SECRET",
                os.getenv("AUTH_SECRET", defaults.download_token_secret),
            ),
            r2_public_url=os.getenv("R2_PUBLIC_URL", ""),
            s3_bucket=os.getenv("S3_BUCKET", defaults.s3_bucket),
            s3_endpoint=os.getenv("S3_ENDPOINT", ""),
            s3_region=os.getenv("S3_REGION", defaults.s3_region),
            replicate_api_token=os.getenv("REPLICATE_API_TOKEN", ""),
            replicate_api_url=os.getenv(
                "REPLICATE_API_URL", defaults.replicate_api_url
            ).rstrip("/"),
            replicate_model=os.getenv("REPLICATE_MODEL", defaults.replicate_model),
            replicate_webhook_secret=os.getenv("REPLICATE_WEBHOOK_SECRET", ""),
            polar_access_token=os.getenv("POLAR_ACCESS_TOKEN", ""),
            polar_webhook_secret=os.getenv("POLAR_WEBHOOK_SECRET", ""),
            polar_product_ids={
                package_id: os.getenv(package["product_env"], "")
                for package_id, package in CREDIT_PACKAGES.items()
            },
            http_timeout_seconds=float(
                os.getenv("HTTP_TIMEOUT_SECONDS", defaults.http_timeout_seconds)
            ),
        )

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    @property
    def polar_api_url(self) -> str:
        # Sandbox outside production so test purchases never charge a card
        if self.is_production:
            return "https://api.polar.sh"
        return "https://sandbox-api.polar.sh"

    @property
    def replicate_webhook_url(self) -> str:
        return f"{self.api_base_url}/api/webhooks/replicate"


@lru_cache()
def get_settings() -> Settings:
    """FastAPI dependency / process-wide accessor for ``Settings``."""
    return Settings.from_env()
