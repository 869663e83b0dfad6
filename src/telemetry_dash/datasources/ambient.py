"""Weather-station cloud API client"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from ..errors import ProcessingError, SourceConnectionError

logger = logging.getLogger(__name__)


class AmbientWeatherClient:
    """Async HTTP client for the weather-station device history endpoint."""

    def __init__(self, base_url: str, api_key: str, application_key: str) -> None:
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.application_key = application_key

    async def fetch_device_data(
        self, client: httpx.AsyncClient, mac_address: str, limit: int = 288
    ) -> list[dict[str, Any]]:
        """Fetch the recent samples of a device, newest first."""
        url = f"{self.base_url}/devices/{mac_address}"
        params = {
            "apiKey": self.api_key,
            "applicationKey": self.application_key,
            "limit": limit,
        }
        try:
            response = await client.get(url, params=params)
            response.raise_for_status()
        except httpx.TimeoutException as e:
            raise SourceConnectionError(f"Weather station API timeout: {e}") from e
        except httpx.HTTPError as e:
            raise SourceConnectionError(f"Weather station API HTTP error: {e}") from e

        try:
            data = response.json()
        except ValueError as e:
            raise ProcessingError(f"Weather station API returned invalid JSON: {e}") from e

        if not isinstance(data, list):
            raise ProcessingError(f"Expected a list of samples, got {type(data).__name__}")
        logger.debug("Fetched %d weather samples for %s", len(data), mac_address)
        return data
