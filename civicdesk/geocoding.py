# Reverse geocoding (coordinates to a human-readable address) via a
# Nominatim-compatible endpoint. Never fails a submission: any error gives
# back the literal coordinate string instead.

import logging
from typing import Optional, Tuple

import httpx

from .config import GEOCODER_URL, GEOCODER_TIMEOUT_SECONDS, GEOCODER_USER_AGENT

logger = logging.getLogger(__name__)


def coordinate_label(latitude: float, longitude: float) -> str:
    return f"Lat: {latitude:.5f}, Lon: {longitude:.5f}"


class ReverseGeocoder:
    def __init__(self, url: str = GEOCODER_URL, timeout: float = GEOCODER_TIMEOUT_SECONDS,
                 client: Optional[httpx.AsyncClient] = None):
        self.url = url
        self.timeout = timeout
        self._client = client

    async def _fetch(self, latitude: float, longitude: float) -> Optional[str]:
        params = {"format": "json", "lat": latitude, "lon": longitude}
        headers = {"User-Agent": GEOCODER_USER_AGENT}
        if self._client is not None:
            resp = await self._client.get(self.url, params=params, headers=headers, timeout=self.timeout)
        else:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                resp = await client.get(self.url, params=params, headers=headers)
        resp.raise_for_status()
        data = resp.json()
        if isinstance(data, dict) and isinstance(data.get("display_name"), str) and data["display_name"].strip():
            return data["display_name"].strip()
        return None

    async def reverse(self, latitude: float, longitude: float) -> Tuple[str, bool]:
        """Return (location text, resolved) where resolved is False for the coordinate fallback."""
        try:
            address = await self._fetch(latitude, longitude)
        except (httpx.HTTPError, ValueError) as e:
            logger.warning("Reverse geocoding failed for (%s, %s): %s", latitude, longitude, e)
            address = None
        if address:
            return address, True
        return coordinate_label(latitude, longitude), False
