"""
Data sources package for telemetry-dash.

Each upstream gets an HTTP client module and a DataSource that normalizes its
payloads into a latest snapshot plus a unified history.
"""

from .base import DataSource, DataSourceMetadata, FetchResult, MetricDescriptor
from .push_source import PushDataSource
from .registry import DataSourceRegistry
from .rest_poll_source import RestPollingDataSource
from .weather_station_source import WeatherStationDataSource

__all__ = [
    "DataSource",
    "DataSourceMetadata",
    "FetchResult",
    "MetricDescriptor",
    "DataSourceRegistry",
    "PushDataSource",
    "RestPollingDataSource",
    "WeatherStationDataSource",
]
