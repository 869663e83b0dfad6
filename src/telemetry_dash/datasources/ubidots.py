"""IoT platform REST API client (variables and raw series)"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from ..errors import ProcessingError, SourceConnectionError

logger = logging.getLogger(__name__)

SERIES_COLUMNS = ["value.value", "timestamp"]


class UbidotsClient:
    """Async HTTP client for the IoT platform's v1.6 API."""

    def __init__(self, base_url: str) -> None:
        self.base_url = base_url.rstrip("/")

    @staticmethod
    def _headers(token: str) -> dict[str, str]:
        return {"X-Auth-Token": token, "Content-Type": "application/json"}

    async def _send(
        self, client: httpx.AsyncClient, method: str, url: str, **kwargs: Any
    ) -> Any:
        try:
            response = await client.request(method, url, **kwargs)
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise SourceConnectionError(f"{method} {url} failed: {e}") from e
        try:
            return response.json()
        except ValueError as e:
            raise ProcessingError(f"{method} {url} returned invalid JSON: {e}") from e

    async def fetch_latest_value(
        self, client: httpx.AsyncClient, variable_id: str, token: str
    ) -> dict[str, Any] | None:
        """Fetch the most recent value of a variable. None when it has no values."""
        url = f"{self.base_url}/variables/{variable_id}/values"
        data = await self._send(
            client, "GET", url, params={"page_size": 1}, headers=self._headers(token)
        )
        try:
            results = data["results"]
        except (KeyError, TypeError) as e:
            raise ProcessingError(f"Unexpected values payload for {variable_id}: {data!r}") from e
        if not results:
            return None
        if not isinstance(results[0], dict):
            raise ProcessingError(f"Unexpected value entry for {variable_id}: {results[0]!r}")
        return results[0]

    async def fetch_raw_series(
        self,
        client: httpx.AsyncClient,
        variable_ids: list[str],
        token: str,
        start: int,
        end: int,
    ) -> list[list[Any]]:
        """
        Fetch the raw ``[value, timestamp]`` rows of several variables at once.

        The response carries one result set per requested variable, in request
        order, without echoing the ids back.

        Raises:
            ProcessingError: If the number of result sets does not match
        """
        body = {
            "variables": list(variable_ids),
            "columns": SERIES_COLUMNS,
            "join_dataframes": False,
            "start": start,
            "end": end,
        }
        url = f"{self.base_url}/data/raw/series"
        data = await self._send(client, "POST", url, json=body, headers=self._headers(token))

        results = data.get("results") if isinstance(data, dict) else None
        if not isinstance(results, list):
            raise ProcessingError(f"Raw series payload has no result list: {data!r}")
        if len(results) != len(variable_ids):
            raise ProcessingError(
                f"Raw series returned {len(results)} result sets for "
                f"{len(variable_ids)} variables"
            )
        logger.debug("Fetched raw series for %d variables", len(variable_ids))
        return results
