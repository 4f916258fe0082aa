"""
schemas.py — Request Bodies, Queue Messages & Webhook Events
=============================================================

Everything that crosses the service boundary is validated here before
business logic sees it.  Webhook payloads are closed tagged unions: each
event the service reacts to has its own model, selected by the
``status`` (Replicate) or ``type`` (Polar) discriminator.
"""

from typing import Any, Dict, Literal, Optional, Union

from pydantic import (
    AfterValidator, BaseModel, ConfigDict, Field, TypeAdapter, field_validator,
)
from typing_extensions import Annotated

from miraidub.config import MAX_DURATION_SECONDS, SUPPORTED_LANGUAGES


def _check_language(value: str) -> str:
    if value not in SUPPORTED_LANGUAGES:
        raise ValueError(f"Unsupported language: {value}")
    return value


LanguageCode = Annotated[str, AfterValidator(_check_language)]


# ─────────────────────────────────────────────────────────────
# Request bodies
# ─────────────────────────────────────────────────────────────

class UploadInitiateRequest(BaseModel):
    file_name: str = Field(min_length=1, max_length=255)
    file_size: int = Field(gt=0)
    content_type: str
    source_language: LanguageCode
    target_language: LanguageCode
    title: Optional[str] = Field(default=None, min_length=1, max_length=255)
    duration_seconds: Optional[float] = Field(default=None, gt=0, le=MAX_DURATION_SECONDS)


class ConvertAccountRequest(BaseModel):
    email: str = Field(pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$", max_length=255)
    password: str = Field(min_length=8, max_length=100)
    name: str = Field(min_length=1, max_length=100)


class CheckoutRequest(BaseModel):
    package_id: str
    # Accepted for client compatibility; Polar only takes http(s) success URLs,
    # so the checkout always returns through /checkout/success.
    success_url: Optional[str] = None
    cancel_url: Optional[str] = None


# ─────────────────────────────────────────────────────────────
# Queue message
# ─────────────────────────────────────────────────────────────

class VideoProcessingMessage(BaseModel):
    """Body of a processing request on the video queue."""

    model_config = ConfigDict(populate_by_name=True)

    type: Literal["PROCESS_VIDEO"] = "PROCESS_VIDEO"
    video_id: str = Field(alias="videoId")
    job_id: str = Field(alias="jobId")
    user_id: str = Field(alias="userId")

    def to_message(self) -> dict:
        return self.model_dump(by_alias=True)


# ─────────────────────────────────────────────────────────────
# Replicate prediction webhooks
# ─────────────────────────────────────────────────────────────

class _PredictionBase(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    logs: Optional[str] = None
    error: Optional[Any] = None

    @property
    def error_message(self) -> Optional[str]:
        if self.error is None:
            return None
        return str(self.error)


class PredictionSucceeded(_PredictionBase):
    status: Literal["succeeded"]
    output: Any = None

    @property
    def output_url(self) -> Optional[str]:
        """First URL in the prediction output, if any."""
        output = self.output
        if isinstance(output, list):
            output = output[0] if output else None
        if isinstance(output, str) and output:
            return output
        return None


class PredictionFailed(_PredictionBase):
    status: Literal["failed", "canceled"]


class PredictionInProgress(_PredictionBase):
    status: Literal["starting", "processing"]


PredictionEvent = Annotated[
    Union[PredictionSucceeded, PredictionFailed, PredictionInProgress],
    Field(discriminator="status"),
]

prediction_event_adapter = TypeAdapter(PredictionEvent)


# ─────────────────────────────────────────────────────────────
# Polar payment webhooks
# ─────────────────────────────────────────────────────────────

class _PolarObject(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    metadata: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("metadata", mode="before")
    @classmethod
    def _none_is_empty(cls, value):
        return value or {}

    @property
    def user_id(self) -> Optional[str]:
        value = self.metadata.get("userId")
        return str(value) if value else None


class PolarOrder(_PolarObject):
    customer_id: Optional[str] = None
    amount: Optional[int] = None


class PolarSubscription(_PolarObject):
    customer_id: Optional[str] = None
    status: Optional[str] = None


class OrderCreated(BaseModel):
    type: Literal["order.created"]
    data: PolarOrder


class SubscriptionActive(BaseModel):
    type: Literal["subscription.created", "subscription.updated"]
    data: PolarSubscription


class SubscriptionCanceled(BaseModel):
    type: Literal["subscription.canceled"]
    data: PolarSubscription


PolarEvent = Annotated[
    Union[OrderCreated, SubscriptionActive, SubscriptionCanceled],
    Field(discriminator="type"),
]

polar_event_adapter = TypeAdapter(PolarEvent)

HANDLED_POLAR_EVENTS = {
    "order.created",
    "subscription.created",
    "subscription.updated",
    "subscription.canceled",
}


class CheckoutMetadata(BaseModel):
    """Metadata attached to a checkout and echoed back on its order."""

    model_config = ConfigDict(populate_by_name=True)

    user_id: str = Field(alias="userId", min_length=1)
    package_id: str = Field(alias="packageId", min_length=1)
    credits_amount: float = Field(alias="creditsAmount", gt=0)
