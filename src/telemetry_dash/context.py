"""
Application context for dependency injection.

This module provides a central container for all application dependencies,
eliminating the need for global singletons and enabling clean testing.

Usage:
    config = load_config()
    context = AppContext.from_config(config)
    await context.start()

    app = create_app(context=context)

    # On shutdown
    await context.shutdown()
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Optional

from telemetry_dash.config import Config
from telemetry_dash.datasources.registry import DataSourceRegistry
from telemetry_dash.scheduler import PollScheduler
from telemetry_dash.store import SourceStateStore

if TYPE_CHECKING:
    from telemetry_dash.datasources.base import DataSource
    from telemetry_dash.datasources.rest_poll_source import RestPollingDataSource

logger = logging.getLogger(__name__)


@dataclass
class AppContext:
    """
    Application context containing all shared dependencies.

    This class owns the lifecycle of all major components:
    - Configuration
    - Data source registry
    - State store
    - Scheduler

    Attributes:
        config: Application configuration
        registry: Registered data sources
        store: Consumer-facing state per source
        scheduler: Drives fetches and subscriptions
        config_path: File the configuration was loaded from, if any
    """

    config: Config
    registry: DataSourceRegistry
    store: SourceStateStore
    scheduler: PollScheduler
    config_path: Optional[Path] = None
    _started: bool = field(default=False, repr=False)

    @classmethod
    def create(cls, config: Config, config_path: Optional[Path] = None) -> "AppContext":
        """
        Factory method to create an empty AppContext.

        Example:
            context = AppContext.create(load_config())
            context.add_data_source(MyDataSource())
            await context.start()
        """
        registry = DataSourceRegistry()
        store = SourceStateStore()
        scheduler = PollScheduler(registry, store)
        return cls(
            config=config,
            registry=registry,
            store=store,
            scheduler=scheduler,
            config_path=config_path,
        )

    @classmethod
    def from_config(cls, config: Config, config_path: Optional[Path] = None) -> "AppContext":
        """Create a context with the three upstream sources registered."""
        from telemetry_dash.datasources import (
            PushDataSource,
            RestPollingDataSource,
            WeatherStationDataSource,
        )

        tz = config.display.tzinfo()
        context = cls.create(config, config_path)
        context.add_data_source(PushDataSource(config.push, tz=tz))
        context.add_data_source(RestPollingDataSource(config.rest, tz=tz))
        context.add_data_source(WeatherStationDataSource(config.weather, tz=tz))
        return context

    def add_data_source(self, source: "DataSource") -> "AppContext":
        """
        Add a data source to the context.

        Returns:
            self (for method chaining)
        """
        self.registry.register(source)
        return self

    @property
    def data_sources(self) -> list["DataSource"]:
        return self.registry.get_all()

    async def start(self) -> None:
        """
        Initialize all data sources and start their cadences.

        Note:
            A source that fails to initialize is reported in its own state;
            the other sources still start.
        """
        if self._started:
            logger.warning("AppContext already started, ignoring start() call")
            return

        logger.info(f"Starting AppContext with {len(self.registry)} data source(s)...")
        await self.scheduler.start()
        self._started = True
        logger.info("AppContext started")

    async def shutdown(self) -> None:
        """
        Clean shutdown of all components.

        This method:
        1. Stops timers and outstanding fetches
        2. Shuts down all data sources (cancels subscriptions)

        Safe to call multiple times or before start().
        """
        if not self._started:
            logger.debug("AppContext not started, nothing to shutdown")
            return

        logger.info("Shutting down AppContext...")
        await self.scheduler.stop()
        await self.registry.shutdown_all()
        self._started = False
        logger.info("AppContext shutdown complete")

    @property
    def is_started(self) -> bool:
        """Check if context has been started."""
        return self._started

    def get_data_source(self, source_id: str) -> Optional["DataSource"]:
        """Get a data source by ID, or None if not found"""
        return self.registry.get(source_id)

    def rest_source(self) -> Optional["RestPollingDataSource"]:
        """The REST polling source, if registered."""
        from telemetry_dash.datasources.rest_poll_source import RestPollingDataSource

        source = self.registry.get("rest")
        return source if isinstance(source, RestPollingDataSource) else None

    def select_group(self, group_id: str) -> bool:
        """
        Select a sensor group and re-fetch it when the selection changed.

        Returns:
            True if a re-fetch was started

        Raises:
            LookupError: If no REST source is registered
            ValueError: If the group is not configured
        """
        source = self.rest_source()
        if source is None:
            raise LookupError("No REST polling source registered")
        if not source.select_group(group_id):
            return False
        return self.scheduler.trigger("rest", restart=True)

    def refresh(self, source_id: str) -> bool:
        """Manually trigger a fetch; dropped while one is in flight."""
        return self.scheduler.trigger(source_id)

    def __repr__(self) -> str:
        sources = [s.get_metadata().source_id for s in self.registry]
        return f"AppContext(started={self._started}, sources={sources})"
