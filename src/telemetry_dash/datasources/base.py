"""
Base interface for all data sources in telemetry-dash.

Data sources are responsible for fetching fresh data from an upstream and
normalizing it into a LatestSnapshot plus a UnifiedSeries. They do NOT keep
consumer-facing state - the scheduler stores every result in the state store.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Optional

from ..normalize import UnifiedSeries


@dataclass
class MetricDescriptor:
    """
    One charted metric of a source.

    Attributes:
        key: Field name on the MetricPoints (e.g., "pressure")
        name: Human-readable name
        unit: Unit of measurement (e.g., "bar", "°C")
    """

    key: str
    name: str
    unit: Optional[str] = None


@dataclass
class DataSourceMetadata:
    """
    Metadata describing a data source.

    Attributes:
        source_id: Unique identifier for this data source
        name: Human-readable name
        description: Brief description of what this source provides
        refresh_interval: Seconds between scheduled fetches, 0 for sources
            that are only fetched on demand or pushed to
        label: Source/device label attached to the latest snapshot
        push: Whether the upstream pushes updates through a subscription
        enabled: Whether this source is currently enabled
        metrics: Metrics found on the history rows
    """

    source_id: str
    name: str
    description: str
    refresh_interval: int
    label: str = ""
    push: bool = False
    enabled: bool = True
    metrics: list[MetricDescriptor] = field(default_factory=list)


@dataclass
class FetchResult:
    """
    Outcome of one successful fetch cycle.

    Attributes:
        latest: Most recent observation plus its label, None when empty
        history: Rows ascending by timestamp
    """

    latest: Optional[dict[str, Any]]
    history: UnifiedSeries = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        """True when the upstream was reachable but returned nothing."""
        return self.latest is None and not self.history


class DataSource(ABC):
    """
    Abstract base class for all data sources.

    Polled sources make a fresh request in fetch(). Push sources hold a
    subscription opened in initialize() and report every update to their
    listener; their fetch() returns the latest pushed collection.
    """

    @abstractmethod
    async def initialize(self) -> None:
        """
        Initialize the data source.

        This is called once at startup and should:
        - Create HTTP clients
        - Open subscriptions (push sources)
        - Validate configuration

        Raises:
            ConfigurationError: If required settings are missing
        """
        pass

    @abstractmethod
    async def fetch(self) -> FetchResult:
        """
        Fetch and normalize fresh data from this source.

        Returns:
            The latest snapshot and the unified history

        Raises:
            SourceConnectionError: If the upstream cannot be reached
            ProcessingError: If the payload cannot be decoded
        """
        pass

    @abstractmethod
    def get_metadata(self) -> DataSourceMetadata:
        """
        Get metadata about this data source.

        This is a synchronous method that returns configuration/metadata
        without performing any I/O operations.
        """
        pass

    @abstractmethod
    async def health_check(self) -> bool:
        """
        Check if the upstream is reachable with a lightweight request.

        Returns:
            True if healthy, False otherwise
        """
        pass

    @abstractmethod
    async def shutdown(self) -> None:
        """
        Clean up resources used by this data source.

        This is called at application shutdown and should:
        - Cancel subscriptions
        - Close connections
        """
        pass
