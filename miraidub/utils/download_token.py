"""
download_token.py — Signed, Time-Limited Download Links
=========================================================

A download token lets a browser or share sheet fetch a finished video
without a session.  Format:

    base64url(json({"videoId", "userId", "exp"})) + "." + base64url(hmac)

The HMAC-SHA256 is computed over the encoded payload part exactly as it
appears in the token.  Padding is stripped from both halves.
"""

import base64
import hashlib
import hmac
import json
import logging
import time
from datetime import datetime, timezone
from typing import Optional, Tuple

from miraidub.config import DOWNLOAD_TOKEN_TTL_S

logger = logging.getLogger(__name__)


def _b64encode(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).decode("ascii").rstrip("=")


def _b64decode(text: str) -> bytes:
    padding = "=" * (-len(text) % 4)
    return base64.urlsafe_b64decode(text + padding)


def _sign(payload_part: str, secret: str) -> str:
    digest = hmac.new(secret.encode(), payload_part.encode(), hashlib.sha256).digest()
    return _b64encode(digest)


def generate_download_token(
    video_id: str,
    user_id: str,
    secret: str,
    expires_in: int = DOWNLOAD_TOKEN_TTL_S,
    now: Optional[float] = None,
) -> Tuple[str, datetime]:
    """
    Create a token for one video.

    Returns:
        (token, expires_at) — expires_at is a timezone-aware UTC datetime.
    """
    issued = time.time() if now is None else now
    exp = int(issued + expires_in)

    payload = json.dumps(
        {"videoId": video_id, "userId": user_id, "exp": exp},
        separators=(",", ":"),
    )
    payload_part = _b64encode(payload.encode())
    token = f"{payload_part}.{_sign(payload_part, secret)}"

    return token, datetime.fromtimestamp(exp, tz=timezone.utc)


def validate_download_token(
    token: str,
    secret: str,
    now: Optional[float] = None,
) -> Optional[dict]:
    """
    Check a token's signature and expiry.

    Returns:
        {"video_id": ..., "user_id": ...} or None when the token is
        malformed, tampered with, or expired.
    """
    payload_part, _, signature = token.partition(".")
    if not payload_part or not signature:
        return None

    if not hmac.compare_digest(_sign(payload_part, secret).encode(), signature.encode()):
        return None

    try:
        payload = json.loads(_b64decode(payload_part))
        video_id = str(payload["videoId"])
        user_id = str(payload["userId"])
        exp = int(payload["exp"])
    except (ValueError, KeyError, TypeError) as e:
        logger.warning(f"Malformed download token payload: {e}")
        return None

    current = time.time() if now is None else now
    if exp < current:
        return None

    return {"video_id": video_id, "user_id": user_id}
