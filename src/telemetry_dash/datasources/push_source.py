"""Push data source backed by a realtime database subscription"""

import asyncio
import logging
from collections.abc import Awaitable
from datetime import tzinfo
from typing import Any, Callable, Optional, Union

from ..config import PushSourceConfig
from ..errors import ConfigurationError, DataSourceError, ProcessingError, SourceConnectionError
from ..normalize import MetricPoint, UnifiedSeries, coerce_number, make_point, to_finite
from .base import DataSource, DataSourceMetadata, FetchResult, MetricDescriptor
from .realtime_db import RealtimeDatabaseClient, Subscription

logger = logging.getLogger(__name__)

PUSH_METRICS = [
    MetricDescriptor(key="pressure", name="Pressure", unit="bar"),
    MetricDescriptor(key="flow", name="Flow", unit="L/min"),
    MetricDescriptor(key="rssi", name="Signal (RSSI)", unit="dBm"),
]

MICROSECONDS_PER_MINUTE = 60_000_000

UpdateListener = Callable[[str, Union[FetchResult, Exception]], Awaitable[None]]


def sort_timestamp_keys(keys: Any) -> list[tuple[float, str]]:
    """
    Sort collection keys by their numeric value ("9" before "10").

    Raises:
        ProcessingError: If a key is not a number
    """
    numbered = []
    for key in keys:
        number = to_finite(key)
        if number is None:
            raise ProcessingError(f"Collection key '{key}' is not a numeric timestamp")
        numbered.append((number, key))
    return sorted(numbered)


def normalize_push_collection(
    values: Any, label: str, tz: Optional[tzinfo] = None
) -> tuple[Optional[dict[str, Any]], UnifiedSeries]:
    """
    Turn the whole pushed collection into a latest snapshot and a history.

    Args:
        values: Mapping of timestamp key (epoch seconds) -> record fields
        label: Source label attached to the latest snapshot
        tz: Timezone for the time labels

    Returns:
        ``(latest, history)``, ``(None, [])`` for an empty collection

    Raises:
        ProcessingError: If the collection or one of its records is malformed
    """
    if not values:
        return None, []
    if not isinstance(values, dict):
        raise ProcessingError(f"Expected a keyed collection, got {type(values).__name__}")

    # keys naming the same instant ("100", "100.0") share a row, the later key wins
    rows: dict[int, MetricPoint] = {}
    ordered = sort_timestamp_keys(values.keys())
    for seconds, key in ordered:
        record = values[key]
        if not isinstance(record, dict):
            raise ProcessingError(f"Record '{key}' is not an object")
        timestamp = round(seconds * 1000)
        try:
            point = make_point(timestamp, tz)
        except (OverflowError, OSError, ValueError) as e:
            raise ProcessingError(f"Collection key '{key}' is out of range: {e}") from e
        for metric in PUSH_METRICS:
            point[metric.key] = coerce_number(record.get(metric.key))
        rows[timestamp] = point
    history: UnifiedSeries = [rows[timestamp] for timestamp in sorted(rows)]

    _, latest_key = ordered[-1]
    record = values[latest_key]
    latest = {
        **record,
        "label": label,
        "timestamp": latest_key,
        "activity_minutes": coerce_number(record.get("elapsed_time_us"))
        / MICROSECONDS_PER_MINUTE,
    }
    return latest, history


class PushDataSource(DataSource):
    """
    Readings pushed by a realtime database.

    One subscription is opened in initialize() and held until shutdown(). Every
    update carries the whole collection and fully replaces the previous result.
    """

    def __init__(
        self,
        config: PushSourceConfig,
        client: Optional[RealtimeDatabaseClient] = None,
        tz: Optional[tzinfo] = None,
    ):
        """
        Initialize push data source.

        Args:
            config: Push source configuration
            client: Database client (built from config when omitted)
            tz: Timezone for the time labels
        """
        self._config = config
        self._client = client
        self._tz = tz
        self._subscription: Optional[Subscription] = None
        self._listeners: list[UpdateListener] = []
        self._result: Optional[FetchResult] = None
        self._error: Optional[Exception] = None
        self._received = asyncio.Event()

    def add_listener(self, listener: UpdateListener) -> None:
        """Register a coroutine called with every result or error. Registering twice is a no-op."""
        if listener not in self._listeners:
            self._listeners.append(listener)

    async def initialize(self) -> None:
        """Validate config and open the subscription"""
        if not self._config.url:
            raise ConfigurationError("Push source requires a database url")
        if self._client is None:
            self._client = RealtimeDatabaseClient(
                self._config.url, self._config.auth, timeout=self._config.timeout
            )
        self._subscribe(self._client)

    def _subscribe(self, client: RealtimeDatabaseClient) -> None:
        self._received.clear()
        self._subscription = client.subscribe(
            self._config.path, self._on_value, self._on_error
        )

    async def _on_value(self, values: Any) -> None:
        try:
            latest, history = normalize_push_collection(values, self._config.label, self._tz)
        except ProcessingError as e:
            await self._on_error(ProcessingError(f"Error processing pushed readings: {e}"))
            return

        self._result = FetchResult(latest=latest, history=history)
        self._error = None
        self._received.set()
        if latest is None:
            logger.info("No data available at push path", extra={"path": self._config.path})
        await self._notify(self._result)

    async def _on_error(self, error: Exception) -> None:
        self._result = None
        self._error = error
        self._received.set()
        await self._notify(error)

    async def _notify(self, outcome: Union[FetchResult, Exception]) -> None:
        source_id = self.get_metadata().source_id
        for listener in self._listeners:
            try:
                await listener(source_id, outcome)
            except Exception as e:
                logger.exception(f"Push listener failed: {e}")

    async def fetch(self) -> FetchResult:
        """
        Return the latest pushed collection.

        Waits for the first update when none has arrived yet. A subscription
        that ended with an error is reopened first.
        """
        if self._client is None:
            raise ConfigurationError("Push source is not initialized")
        if self._subscription is None or not self._subscription.active:
            self._subscribe(self._client)

        try:
            await asyncio.wait_for(self._received.wait(), timeout=self._config.timeout)
        except asyncio.TimeoutError as e:
            raise SourceConnectionError(
                f"No update from '{self._config.path}' within {self._config.timeout}s"
            ) from e

        if self._error is not None:
            raise self._error
        if self._result is None:
            raise ProcessingError(f"No readings received from '{self._config.path}'")
        return self._result

    def get_metadata(self) -> DataSourceMetadata:
        """Get push data source metadata"""
        return DataSourceMetadata(
            source_id="push",
            name="Realtime sensor",
            description=f"Readings pushed to '{self._config.path}'",
            refresh_interval=0,
            label=self._config.label,
            push=True,
            enabled=self._config.enabled,
            metrics=list(PUSH_METRICS),
        )

    async def health_check(self) -> bool:
        """Check if the database answers a plain read"""
        if self._client is None:
            return False
        try:
            await self._client.get(self._config.path)
            return True
        except DataSourceError as e:
            logger.debug(f"Push source health check failed: {e}")
            return False

    async def shutdown(self) -> None:
        """Cancel the subscription and close the client"""
        if self._subscription is not None:
            await self._subscription.cancel()
            self._subscription = None
        if self._client is not None:
            await self._client.close()
        logger.debug("Push data source shut down")
