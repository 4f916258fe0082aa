"""
webhook_signature.py — Shared-Secret Webhook Verification
===========================================================

Polar and Replicate both sign webhooks the Standard Webhooks way:

    webhook-id:        message id
    webhook-timestamp: unix seconds
    webhook-signature: space-separated list of "v1,<base64 hmac>"

The HMAC-SHA256 covers "{id}.{timestamp}.{raw body}".  Secrets of the
form "whsec_<base64>" are decoded; any other secret is used as raw bytes.
"""

import base64
import binascii
import hashlib
import hmac
import logging
import time
from typing import Mapping, Optional

logger = logging.getLogger(__name__)

# Reject deliveries whose timestamp is further than this from now
TIMESTAMP_TOLERANCE_S = 5 * 60


def _secret_bytes(secret: str) -> bytes:
    if secret.startswith("whsec_"):
        try:
            return base64.b64decode(secret[len("whsec_"):])
        except (binascii.Error, ValueError):
            logger.warning("Webhook secret has whsec_ prefix but is not base64")
    return secret.encode()


def compute_signature(secret: str, msg_id: str, timestamp: str, body: bytes) -> str:
    signed = f"{msg_id}.{timestamp}.".encode() + body
    digest = hmac.new(_secret_bytes(secret), signed, hashlib.sha256).digest()
    return "v1," + base64.b64encode(digest).decode()


def verify_webhook_signature(
    body: bytes,
    headers: Mapping[str, str],
    secret: str,
    now: Optional[float] = None,
) -> bool:
    """Return True when one of the signatures in the headers matches."""
    msg_id = headers.get("webhook-id", "")
    timestamp = headers.get("webhook-timestamp", "")
    signatures = headers.get("webhook-signature", "")

    if not (msg_id and timestamp and signatures):
        return False

    try:
        sent_at = int(timestamp)
    except ValueError:
        return False

    current = time.time() if now is None else now
    if abs(current - sent_at) > TIMESTAMP_TOLERANCE_S:
        logger.warning(f"Webhook {msg_id} timestamp outside tolerance")
        return False

    expected = compute_signature(secret, msg_id, timestamp, body)
    return any(
        hmac.compare_digest(expected.encode(), candidate.encode())
        for candidate in signatures.split()
    )
