"""
polar_client.py — Polar Checkout API
======================================

Creates hosted checkout sessions for credit packages.  The checkout
metadata ({userId, packageId, creditsAmount}) comes back on the
``order.created`` webhook and is what actually credits the user.
"""

import logging
from typing import Optional

import httpx

from miraidub.config import Settings
from miraidub.errors import ExternalServiceError

logger = logging.getLogger(__name__)


async def _polar_api(
    settings: Settings,
    method: str,
    endpoint: str,
    data: Optional[dict] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> dict:
    """Make an authenticated request to the Polar API."""
    url = f"{settings.polar_api_url}{endpoint}"
    headers = {
        "Authorization": f"Bearer {settings.polar_access_token}",
        "Content-Type": "application/json",
    }

    async with httpx.AsyncClient(
        timeout=settings.http_timeout_seconds, transport=transport
    ) as client:
        try:
            if method == "POST":
                response = await client.post(url, json=data, headers=headers)
            else:
                response = await client.get(url, headers=headers)
        except httpx.HTTPError as e:
            raise ExternalServiceError("polar", f"Polar request failed: {e}") from e

        if response.status_code >= 400:
            logger.error(f"Polar API error: {response.status_code} {response.text}")
            raise ExternalServiceError(
                "polar",
                f"Polar API error: {response.text[:200]}",
                status=response.status_code,
            )

        return response.json()


async def create_checkout_session(
    settings: Settings,
    product_id: str,
    customer_email: str,
    metadata: dict,
    success_url: str,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> dict:
    """
    Create a Polar checkout and return {"checkout_url", "checkout_id"}.

    Polar API: POST /v1/checkouts/
    """
    result = await _polar_api(
        settings,
        "POST",
        "/v1/checkouts/",
        {
            "products": [product_id],
            "customer_email": customer_email,
            "success_url": success_url,
            "metadata": metadata,
        },
        transport=transport,
    )
    return {
        "checkout_url": result.get("url", ""),
        "checkout_id": result.get("id", ""),
    }
