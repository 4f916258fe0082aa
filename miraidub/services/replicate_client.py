"""
replicate_client.py — Replicate Prediction API
================================================

Thin httpx wrapper around the two Replicate calls the pipeline needs:
creating a dubbing prediction (with a webhook for completion) and
reading one back.  Every request carries the fixed client timeout from
settings; the prediction itself has none — it finishes whenever
Replicate calls the webhook.
"""

import logging
from dataclasses import dataclass
from typing import Optional

import httpx

from miraidub.config import SUPPORTED_LANGUAGES, Settings
from miraidub.errors import ExternalServiceError

logger = logging.getLogger(__name__)

# Events Replicate should report back; "logs" feeds the progress estimator
WEBHOOK_EVENTS = ["start", "logs", "completed"]


@dataclass
class Prediction:
    id: str
    status: str


def replicate_language(code: str) -> str:
    """Map our language code to the name the dubbing model expects."""
    return SUPPORTED_LANGUAGES.get(code, code)


class ReplicateClient:
    def __init__(
        self,
        api_token: str,
        api_url: str = "https://api.replicate.com/v1",
        model: str = "heygen/video-translate",
        timeout: float = 30.0,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.api_url = api_url.rstrip("/")
        self.model = model
        self._client = httpx.Client(
            timeout=timeout,
            transport=transport,
            headers={
                "Authorization": f"Bearer {api_token}",
                "Content-Type": "application/json",
            },
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> "ReplicateClient":
        return cls(
            api_token=settings.replicate_api_token,
            api_url=settings.replicate_api_url,
            model=settings.replicate_model,
            timeout=settings.http_timeout_seconds,
        )

    def close(self) -> None:
        self._client.close()

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()

    def _request(self, method: str, path: str, json: Optional[dict] = None) -> dict:
        url = f"{self.api_url}{path}"
        try:
            response = self._client.request(method, url, json=json)
        except httpx.HTTPError as e:
            raise ExternalServiceError("replicate", f"Replicate request failed: {e}") from e

        if response.status_code >= 400:
            logger.error(f"Replicate API error: {response.status_code} {response.text}")
            raise ExternalServiceError(
                "replicate",
                f"Replicate API error: {response.text[:200]}",
                status=response.status_code,
            )
        return response.json()

    def create_translation_prediction(
        self,
        video_url: str,
        output_language: str,
        webhook_url: str,
    ) -> Prediction:
        """
        Submit a video for dubbing.

        Args:
            video_url:       Public URL of the source video.
            output_language: Language name understood by the model.
            webhook_url:     Where Replicate reports progress and completion.
        """
        owner, _, name = self.model.partition("/")
        data = self._request(
            "POST",
            f"/models/{owner}/{name}/predictions",
            json={
                "input": {"video": video_url, "output_language": output_language},
                "webhook": webhook_url,
                "webhook_events_filter": WEBHOOK_EVENTS,
            },
        )
        prediction = Prediction(id=data["id"], status=data.get("status", "starting"))
        logger.info(f"Replicate prediction created: {prediction.id} ({prediction.status})")
        return prediction
