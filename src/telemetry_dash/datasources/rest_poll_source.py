"""REST-polled IoT platform data source (multi-sensor groups)"""

import asyncio
import logging
import time
from datetime import tzinfo
from typing import Any, Callable, Optional

import httpx

from ..config import RestGroupConfig, RestPollingConfig
from ..errors import ConfigurationError, DataSourceError, ProcessingError
from ..normalize import UnifiedSeries, format_time, to_finite, unify
from .base import DataSource, DataSourceMetadata, FetchResult, MetricDescriptor
from .ubidots import UbidotsClient

logger = logging.getLogger(__name__)

# Latest-value placeholder when a variable has no (numeric) value
NOT_AVAILABLE = None

# Raised while decoding a payload of the wrong shape or with out-of-range timestamps
MALFORMED_RESPONSE_ERRORS = (AttributeError, KeyError, TypeError, ValueError, OverflowError, OSError)


def decode_series(keys: list[str], results: list[Any]) -> list[tuple[int, str, Any]]:
    """
    Pair each result set with the metric key at the same position.

    Args:
        keys: Metric keys in the order their variable ids were requested
        results: Result sets as returned by the raw series endpoint

    Returns:
        ``(timestamp, key, value)`` observations

    Raises:
        ProcessingError: On a length mismatch or a malformed row
    """
    if len(keys) != len(results):
        raise ProcessingError(f"Got {len(results)} result sets for {len(keys)} variables")

    observations = []
    for key, rows in zip(keys, results):
        if not isinstance(rows, list):
            raise ProcessingError(f"Result set for '{key}' is not a list")
        for row in rows:
            if not isinstance(row, (list, tuple)) or len(row) < 2:
                raise ProcessingError(f"Malformed row for '{key}': {row!r}")
            value, timestamp = row[0], to_finite(row[1])
            if timestamp is None:
                raise ProcessingError(f"Row for '{key}' has no numeric timestamp: {row!r}")
            observations.append((int(timestamp), key, value))
    return observations


class RestPollingDataSource(DataSource):
    """
    Sensor groups on a REST IoT platform.

    One fetch covers the selected group: the latest value of every tracked
    variable plus one history request per sensor over the lookback window.
    All requests run concurrently and any failure fails the whole group.
    The source is fetched again only when the selected group changes.
    """

    def __init__(
        self,
        config: RestPollingConfig,
        client: Optional[UbidotsClient] = None,
        tz: Optional[tzinfo] = None,
        clock: Callable[[], float] = time.time,
    ):
        """
        Initialize REST polling data source.

        Args:
            config: Platform configuration with the group registry
            client: API client (built from config when omitted)
            tz: Timezone for the time labels
            clock: Returns the current epoch time in seconds
        """
        self._config = config
        self._api = client or UbidotsClient(config.base_url)
        self._tz = tz
        self._clock = clock
        self._http: Optional[httpx.AsyncClient] = None
        self._groups: dict[str, RestGroupConfig] = {g.group_id: g for g in config.groups}
        self._selected = config.default_group or next(iter(self._groups), "")
        self._latest_values: dict[str, Optional[float]] = {}

    @property
    def groups(self) -> list[RestGroupConfig]:
        return list(self._groups.values())

    @property
    def selected_group(self) -> str:
        return self._selected

    @property
    def latest_values(self) -> dict[str, Optional[float]]:
        """Latest value per metric key from the last successful cycle."""
        return dict(self._latest_values)

    def select_group(self, group_id: str) -> bool:
        """
        Select the group fetched by the next cycle.

        Returns:
            True if the selection changed

        Raises:
            ValueError: If the group is not configured
        """
        if group_id not in self._groups:
            raise ValueError(f"Unknown sensor group '{group_id}'")
        if group_id == self._selected:
            return False
        logger.info(f"Selected sensor group: {group_id}")
        self._selected = group_id
        return True

    def _current_group(self) -> RestGroupConfig:
        group = self._groups.get(self._selected)
        if group is None:
            raise ConfigurationError("No sensor group configured for the REST platform")
        return group

    async def initialize(self) -> None:
        """Validate the registry and create the HTTP client"""
        if self._selected not in self._groups:
            raise ConfigurationError(
                f"Sensor group '{self._selected}' is not configured"
                if self._selected
                else "No sensor group configured for the REST platform"
            )
        self._http = httpx.AsyncClient(timeout=self._config.timeout)
        logger.info(
            f"REST platform source initialized with {len(self._groups)} group(s), "
            f"selected '{self._selected}'"
        )

    async def fetch(self) -> FetchResult:
        """
        Fetch latest values and the unified history of the selected group.

        Raises:
            DataSourceError: If any request of the cycle fails
        """
        if self._http is None:
            raise ConfigurationError("REST platform source is not initialized")
        group = self._current_group()

        end = int(self._clock() * 1000)
        start = end - self._config.lookback_hours * 3600 * 1000

        latest_keys = [
            (sensor, key) for sensor in group.sensors for key in sensor.variables
        ]
        latest_requests = [
            self._api.fetch_latest_value(self._http, sensor.variables[key], sensor.token)
            for sensor, key in latest_keys
        ]
        series_sensors = [sensor for sensor in group.sensors if sensor.variables]
        series_requests = [
            self._api.fetch_raw_series(
                self._http, list(sensor.variables.values()), sensor.token, start, end
            )
            for sensor in series_sensors
        ]

        tasks = [asyncio.ensure_future(request) for request in latest_requests + series_requests]
        try:
            responses = await asyncio.gather(*tasks)
            latest_responses = responses[: len(latest_requests)]
            series_responses = responses[len(latest_requests):]

            latest_values: dict[str, Optional[float]] = {}
            newest: Optional[int] = None
            for (_, key), entry in zip(latest_keys, latest_responses):
                value = to_finite(entry.get("value")) if entry else None
                latest_values[key] = NOT_AVAILABLE if value is None else value
                stamp = to_finite(entry.get("timestamp")) if entry else None
                if value is not None and stamp is not None:
                    newest = int(stamp) if newest is None else max(newest, int(stamp))

            observations = []
            for sensor, results in zip(series_sensors, series_responses):
                observations.extend(decode_series(list(sensor.variables), results))
            history = unify(observations, self._tz)
            latest = self._snapshot(group, latest_values, newest)
        except (DataSourceError, *MALFORMED_RESPONSE_ERRORS) as e:
            for task in tasks:
                task.cancel()
            self._latest_values = {}
            logger.error(f"Fetch of group '{group.group_id}' failed: {e}")
            error_type = type(e) if isinstance(e, DataSourceError) else ProcessingError
            raise error_type(f"Failed to fetch sensor group '{group.name or group.group_id}': {e}") from e

        self._latest_values = latest_values
        logger.debug(
            f"Fetched group '{group.group_id}': {len(latest_values)} latest values, "
            f"{len(history)} history rows"
        )
        return FetchResult(latest=latest, history=history)

    def _snapshot(
        self,
        group: RestGroupConfig,
        latest_values: dict[str, Optional[float]],
        newest: Optional[int],
    ) -> Optional[dict[str, Any]]:
        if all(value is None for value in latest_values.values()):
            return None
        return {
            "label": group.name or group.group_id,
            "group_id": group.group_id,
            "timestamp": newest,
            "time": format_time(newest, self._tz) if newest is not None else None,
            "values": dict(latest_values),
        }

    def get_metadata(self) -> DataSourceMetadata:
        """Get REST platform metadata for the selected group"""
        group = self._groups.get(self._selected)
        metrics: dict[str, MetricDescriptor] = {}
        for sensor in group.sensors if group else []:
            for key in sensor.variables:
                name = key.replace("_", " ").capitalize()
                metrics[key] = MetricDescriptor(key=key, name=name, unit=sensor.units.get(key))
        return DataSourceMetadata(
            source_id="rest",
            name="IoT platform",
            description=f"Sensor groups polled from {self._config.base_url}",
            refresh_interval=0,
            label=(group.name or group.group_id) if group else "",
            enabled=self._config.enabled,
            metrics=list(metrics.values()),
        )

    async def health_check(self) -> bool:
        """Check that the first variable of the selected group answers"""
        group = self._groups.get(self._selected)
        if self._http is None or group is None:
            return False
        for sensor in group.sensors:
            for variable_id in sensor.variables.values():
                try:
                    await self._api.fetch_latest_value(self._http, variable_id, sensor.token)
                    return True
                except DataSourceError as e:
                    logger.debug(f"REST platform health check failed: {e}")
                    return False
        return False

    async def shutdown(self) -> None:
        """Close HTTP client"""
        if self._http:
            await self._http.aclose()
            self._http = None
        logger.debug("REST platform data source shut down")
