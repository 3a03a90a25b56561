"""
AfterShip Tracking API (2024-07) integration.
Authenticates with the as-api-key header. Tracking objects are returned
directly under "data"; errors carry meta.code and meta.message.
"""
import logging
from typing import Optional

import httpx

from astra.errors import CourierAPIError
from astra.integrations.tracking_base import TrackingProvider

logger = logging.getLogger(__name__)

AFTERSHIP_API_BASE = "https://api.aftership.com/tracking/2024-07"
TRACKING_ALREADY_EXISTS = 4003


class AfterShipClient(TrackingProvider):
    """AfterShip tracking integration with bounded per-call timeouts."""

    def __init__(self, api_key: str, base_url: str = AFTERSHIP_API_BASE, timeout: float = 15.0):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    async def _request(self, method: str, path: str, **kwargs) -> dict:
        """Make an authenticated request; return the "data" member."""
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.request(
                    method,
                    f"{self.base_url}{path}",
                    headers={
                        "as-api-key": self.api_key,
                        "Content-Type": "application/json",
                    },
                    **kwargs,
                )
        except httpx.HTTPError as e:
            raise CourierAPIError(f"AfterShip request failed: {e.__class__.__name__}: {e}") from e

        try:
            body = response.json()
        except ValueError:
            body = {}

        if response.status_code >= 400:
            meta = body.get("meta") or {}
            raise CourierAPIError(
                meta.get("message") or f"AfterShip API error: {response.status_code}",
                code=meta.get("code"),
                http_status=response.status_code,
            )
        return body.get("data") or {}

    async def create_tracking(
        self,
        slug: str,
        tracking_number: str,
        title: Optional[str] = None,
        order_id: Optional[str] = None,
    ) -> dict:
        payload = {"tracking_number": tracking_number, "slug": slug}
        if title:
            payload["title"] = title
        if order_id:
            payload["order_id"] = order_id
        logger.debug("AfterShip create tracking: slug=%s", slug, extra={"courier": slug})
        return await self._request("POST", "/trackings", json=payload)

    async def get_tracking(self, slug: str, tracking_number: str) -> dict:
        return await self._request("GET", f"/trackings/{slug}/{tracking_number}")

    async def detect_couriers(self, tracking_number: str) -> list[str]:
        """Slugs AfterShip believes match the tracking number (diagnostics only)."""
        data = await self._request(
            "POST", "/couriers/detect", json={"tracking_number": tracking_number},
        )
        return [c.get("slug") for c in data.get("couriers") or [] if c.get("slug")]

    @staticmethod
    def is_already_exists(error: Exception) -> bool:
        if not isinstance(error, CourierAPIError):
            return False
        return error.code == TRACKING_ALREADY_EXISTS or "already exists" in error.message.lower()
