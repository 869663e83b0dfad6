"""Weather-station data source with imperial to metric conversion"""

from datetime import datetime, timezone, tzinfo
from typing import Any, Callable, Optional

import httpx

from ..config import WeatherStationConfig
from ..errors import ConfigurationError, DataSourceError, ProcessingError
from ..logs import get_component_logger
from ..normalize import (
    UnifiedSeries,
    fahrenheit_to_celsius,
    inches_to_mm,
    inhg_to_hpa,
    mph_to_kmh,
    to_finite,
    unify,
)
from .ambient import AmbientWeatherClient
from .base import DataSource, DataSourceMetadata, FetchResult, MetricDescriptor

logger = get_component_logger(__name__, component="weather")

# upstream field -> (metric key, conversion)
FIELD_CONVERSIONS: dict[str, tuple[str, Optional[Callable[[float], float]]]] = {
    "tempf": ("tempc", fahrenheit_to_celsius),
    "feelsLike": ("feelslikec", fahrenheit_to_celsius),
    "dewPoint": ("dewpointc", fahrenheit_to_celsius),
    "humidity": ("humidity", None),
    "baromrelin": ("baromrelhpa", inhg_to_hpa),
    "baromabsin": ("baromabshpa", inhg_to_hpa),
    "windspeedmph": ("windspeedkmh", mph_to_kmh),
    "windgustmph": ("windgustkmh", mph_to_kmh),
    "winddir": ("winddir", None),
    "dailyrainin": ("dailyrainmm", inches_to_mm),
    "hourlyrainin": ("hourlyrainmm", inches_to_mm),
    "uv": ("uv", None),
    "solarradiation": ("solarradiation", None),
}

WEATHER_METRICS = [
    MetricDescriptor(key="tempc", name="Temperature", unit="°C"),
    MetricDescriptor(key="feelslikec", name="Feels like", unit="°C"),
    MetricDescriptor(key="dewpointc", name="Dew point", unit="°C"),
    MetricDescriptor(key="humidity", name="Humidity", unit="%"),
    MetricDescriptor(key="baromrelhpa", name="Relative pressure", unit="hPa"),
    MetricDescriptor(key="baromabshpa", name="Absolute pressure", unit="hPa"),
    MetricDescriptor(key="windspeedkmh", name="Wind speed", unit="km/h"),
    MetricDescriptor(key="windgustkmh", name="Wind gust", unit="km/h"),
    MetricDescriptor(key="winddir", name="Wind direction", unit="°"),
    MetricDescriptor(key="dailyrainmm", name="Daily rain", unit="mm"),
    MetricDescriptor(key="hourlyrainmm", name="Hourly rain", unit="mm"),
    MetricDescriptor(key="uv", name="UV index", unit=None),
    MetricDescriptor(key="solarradiation", name="Solar radiation", unit="W/m²"),
]


def _parse_date(value: Any) -> Optional[int]:
    """Epoch milliseconds from an epoch-ms number or an ISO-8601 string."""
    number = to_finite(value)
    if number is not None:
        return int(number)
    if not isinstance(value, str) or not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return int(parsed.timestamp() * 1000)


def sample_timestamp(sample: dict[str, Any]) -> int:
    """
    Timestamp of a sample in epoch milliseconds.

    Uses ``dateutc`` and falls back to ``date``.

    Raises:
        ProcessingError: If neither field holds a usable date
    """
    for field_name in ("dateutc", "date"):
        timestamp = _parse_date(sample.get(field_name))
        if timestamp is not None:
            return timestamp
    raise ProcessingError(f"Weather sample has no usable date: {sample!r}")


def convert_sample(sample: dict[str, Any]) -> dict[str, float]:
    """Metric fields of one sample, converted to metric units."""
    converted = {}
    for upstream, (key, conversion) in FIELD_CONVERSIONS.items():
        value = to_finite(sample.get(upstream))
        if value is None:
            continue
        converted[key] = conversion(value) if conversion else value
    return converted


def normalize_weather_samples(
    samples: list[Any], label: str, tz: Optional[tzinfo] = None
) -> tuple[Optional[dict[str, Any]], UnifiedSeries]:
    """
    Turn the device history into a latest snapshot and an ascending series.

    Args:
        samples: Samples as returned by the API (newest first)
        label: Device label attached to the latest snapshot
        tz: Timezone for the time labels

    Returns:
        ``(latest, history)``, ``(None, [])`` when there are no samples

    Raises:
        ProcessingError: If a sample is malformed
    """
    observations = []
    for sample in samples:
        if not isinstance(sample, dict):
            raise ProcessingError(f"Weather sample is not an object: {sample!r}")
        timestamp = sample_timestamp(sample)
        for key, value in convert_sample(sample).items():
            observations.append((timestamp, key, value))

    history = unify(observations, tz)
    if not history:
        return None, []
    return {**history[-1], "label": label}, history


class WeatherStationDataSource(DataSource):
    """
    Weather station history from the vendor's cloud API.

    Polled on a fixed interval. Missing credentials are a terminal
    configuration error raised by initialize().
    """

    def __init__(
        self,
        config: WeatherStationConfig,
        client: Optional[AmbientWeatherClient] = None,
        tz: Optional[tzinfo] = None,
    ):
        """
        Initialize weather station data source.

        Args:
            config: Weather station configuration with credentials
            client: API client (built from config when omitted)
            tz: Timezone for the time labels
        """
        self._config = config
        self._api = client or AmbientWeatherClient(
            config.base_url, config.api_key, config.application_key
        )
        self._tz = tz
        self._http: Optional[httpx.AsyncClient] = None

    async def initialize(self) -> None:
        """Validate credentials and create HTTP client"""
        missing = self._config.missing_credentials
        if missing:
            raise ConfigurationError(
                f"Weather station is missing configuration: {', '.join(missing)}"
            )
        self._http = httpx.AsyncClient(timeout=self._config.timeout)
        logger.info("Weather station data source initialized", device=self._config.mac_address)

    async def fetch(self) -> FetchResult:
        """
        Fetch the device history and convert it to metric units.

        Raises:
            SourceConnectionError: If the API cannot be reached
            ProcessingError: If the samples cannot be decoded
        """
        if self._http is None:
            raise ConfigurationError("Weather station source is not initialized")

        samples = await self._api.fetch_device_data(
            self._http, self._config.mac_address, self._config.limit
        )
        try:
            latest, history = normalize_weather_samples(samples, self._config.label, self._tz)
        except ProcessingError as e:
            logger.error("Error processing weather samples", error=str(e))
            raise ProcessingError(f"Error processing weather samples: {e}") from e

        logger.info("Fetched weather samples", samples=len(samples), rows=len(history))
        return FetchResult(latest=latest, history=history)

    def get_metadata(self) -> DataSourceMetadata:
        """Get weather station metadata"""
        return DataSourceMetadata(
            source_id="weather",
            name="Weather station",
            description=f"Weather station history ({self._config.mac_address or 'unconfigured'})",
            refresh_interval=self._config.refresh_interval,
            label=self._config.label,
            enabled=self._config.enabled,
            metrics=list(WEATHER_METRICS),
        )

    async def health_check(self) -> bool:
        """Check if the weather API answers a single-sample request"""
        if self._http is None:
            return False
        try:
            await self._api.fetch_device_data(self._http, self._config.mac_address, limit=1)
            return True
        except DataSourceError as e:
            logger.debug(f"Weather health check failed: {e}")
            return False

    async def shutdown(self) -> None:
        """Clean up HTTP client"""
        if self._http:
            await self._http.aclose()
            self._http = None
            logger.debug("Weather station data source shut down")
