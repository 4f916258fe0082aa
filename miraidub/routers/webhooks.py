"""
webhooks.py — Replicate & Polar Webhook Router
================================================

Handles:
  POST /api/webhooks/replicate — prediction progress / completion
  POST /api/webhooks/polar     — orders and subscriptions
  GET  /api/webhooks/health

Signatures are checked when the matching secret is configured.  Payloads
are parsed into the closed event unions in ``schemas.py`` before any
handler runs.
"""

import json
import logging
from typing import Optional

import httpx
from fastapi import APIRouter, Depends, Request
from pydantic import ValidationError
from sqlalchemy.orm import Session

from miraidub.config import Settings, get_settings
from miraidub.database import get_db
from miraidub.errors import AppError, ErrorCode, invalid_request
from miraidub.responses import success_response
from miraidub.schemas import (
    HANDLED_POLAR_EVENTS, polar_event_adapter, prediction_event_adapter,
)
from miraidub.services.webhook_service import apply_polar_event, apply_prediction_event
from miraidub.utils.webhook_signature import verify_webhook_signature

logger = logging.getLogger(__name__)
router = APIRouter()


def get_download_transport() -> Optional[httpx.AsyncBaseTransport]:
    """Transport for fetching prediction outputs; None means the network."""
    return None


def _check_signature(request: Request, body: bytes, secret: str, source: str) -> None:
    if not secret:
        logger.warning(f"{source} webhook secret not configured; skipping signature check")
        return
    if not verify_webhook_signature(body, request.headers, secret):
        logger.warning(f"Rejected {source} webhook with invalid signature")
        raise invalid_request("Invalid webhook signature")


@router.post("/webhooks/replicate")
async def replicate_webhook(
    request: Request,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
    transport: Optional[httpx.AsyncBaseTransport] = Depends(get_download_transport),
):
    body = await request.body()
    _check_signature(request, body, settings.replicate_webhook_secret, "Replicate")

    try:
        event = prediction_event_adapter.validate_json(body)
    except ValidationError as e:
        logger.warning(f"Unparseable Replicate webhook: {e}")
        raise AppError(ErrorCode.VALIDATION_ERROR, "Invalid prediction payload")

    logger.info(f"Replicate webhook: prediction {event.id} {event.status}")

    async with httpx.AsyncClient(
        timeout=settings.http_timeout_seconds,
        follow_redirects=True,
        transport=transport,
    ) as client:
        result = await apply_prediction_event(db, event, client)

    return success_response(result)


@router.post("/webhooks/polar")
async def polar_webhook(
    request: Request,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    """
    Handle Polar webhook events.

    Anything we cannot act on (unknown type, bad metadata, unknown user)
    is logged and acknowledged so Polar does not keep redelivering it.
    """
    body = await request.body()
    _check_signature(request, body, settings.polar_webhook_secret, "Polar")

    try:
        payload = json.loads(body)
    except json.JSONDecodeError:
        raise invalid_request("Invalid JSON payload")

    event_type = payload.get("type", "") if isinstance(payload, dict) else ""
    logger.info(f"Polar webhook received: {event_type}")

    if event_type not in HANDLED_POLAR_EVENTS:
        return success_response({"received": True, "handled": False})

    try:
        event = polar_event_adapter.validate_python(payload)
    except ValidationError as e:
        logger.warning(f"Malformed Polar {event_type} event: {e}")
        return success_response({"received": True, "handled": False})

    result = apply_polar_event(db, event)
    return success_response({"received": True, **result})


@router.get("/webhooks/health")
async def webhooks_health():
    return success_response({"status": "ok"})
