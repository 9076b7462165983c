"""Outdoor temperature enrichment from Open-Meteo."""

from __future__ import annotations

import logging
from typing import Optional

import httpx

from models.records import Reading
from models.timeutils import parse_timestamp

LOGGER = logging.getLogger(__name__)

OPEN_METEO_URL = "https://api.open-meteo.com/v1/forecast"
OUTDOOR_SENSOR_NAME = "outdoor"
OUTDOOR_SENSOR_ID = "open-meteo"


class OutdoorWeatherClient:
    """Fetches the current air temperature at fixed coordinates as a synthetic reading."""

    def __init__(
        self,
        device_id: str,
        latitude: float,
        longitude: float,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 10.0,
    ) -> None:
        self.device_id = device_id
        self.latitude = latitude
        self.longitude = longitude
        self._client = client or httpx.AsyncClient(timeout=timeout)

    async def fetch(self) -> Optional[Reading]:
        """Return the current outdoor reading, or None when the API is unavailable."""
        params = {
            "latitude": self.latitude,
            "longitude": self.longitude,
            "current": "temperature_2m",
            "temperature_unit": "celsius",
            "timezone": "GMT",
            "timeformat": "iso8601",
        }
        try:
            response = await self._client.get(OPEN_METEO_URL, params=params)
            response.raise_for_status()
            data = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            LOGGER.warning("Open-Meteo request failed", extra={"reason": str(exc)})
            return None

        current = data.get("current") if isinstance(data, dict) else None
        if not isinstance(current, dict):
            LOGGER.warning("Open-Meteo response missing current conditions")
            return None
        try:
            return Reading(
                device_id=self.device_id,
                sensor_id=OUTDOOR_SENSOR_ID,
                sensor_name=OUTDOOR_SENSOR_NAME,
                temp_c=float(current["temperature_2m"]),
                ts_utc=parse_timestamp(str(current["time"])),
            )
        except (KeyError, TypeError, ValueError) as exc:
            LOGGER.warning("Open-Meteo response malformed", extra={"reason": str(exc)})
            return None

    async def aclose(self) -> None:
        await self._client.aclose()
