"""Data source registry keyed by source id"""

import logging
from collections.abc import Iterator
from typing import Optional

from .base import DataSource, DataSourceMetadata

logger = logging.getLogger(__name__)


class DataSourceRegistry:
    """
    Registry of the configured data sources.

    Sources keep their registration order, which is also the order the
    scheduler starts them in.
    """

    def __init__(self):
        self._sources: dict[str, DataSource] = {}

    def register(self, source: DataSource) -> None:
        """
        Register a data source.

        Raises:
            ValueError: If a source with the same ID is already registered
        """
        metadata = source.get_metadata()
        source_id = metadata.source_id

        if source_id in self._sources:
            raise ValueError(f"Data source '{source_id}' is already registered")

        self._sources[source_id] = source
        logger.info(f"Registered data source: {metadata.name} (id={source_id})")

    def get(self, source_id: str) -> Optional[DataSource]:
        """Get a data source by ID, or None if not found"""
        return self._sources.get(source_id)

    def get_all(self) -> list[DataSource]:
        """Get all registered data sources"""
        return list(self._sources.values())

    def get_enabled(self) -> list[DataSource]:
        """Get all enabled data sources"""
        return [
            source
            for source in self._sources.values()
            if source.get_metadata().enabled
        ]

    def get_metadata(self) -> dict[str, DataSourceMetadata]:
        """Metadata of every registered source, by source ID"""
        return {source_id: source.get_metadata() for source_id, source in self._sources.items()}

    async def shutdown_all(self) -> None:
        """Shutdown all registered data sources"""
        logger.info(f"Shutting down {len(self._sources)} data source(s)...")

        for source_id, source in self._sources.items():
            try:
                await source.shutdown()
            except Exception as e:
                logger.error(f"Error shutting down data source '{source_id}': {e}")

    def __iter__(self) -> Iterator[DataSource]:
        return iter(list(self._sources.values()))

    def __len__(self) -> int:
        """Return number of registered sources"""
        return len(self._sources)

    def __contains__(self, source_id: str) -> bool:
        """Check if a source is registered"""
        return source_id in self._sources
