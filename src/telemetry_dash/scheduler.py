"""
Fetch scheduling for all data sources.

Each source is driven on its own cadence:
- push sources report through their subscription listener
- interval sources are triggered immediately and then every refresh_interval
- on-demand sources (refresh_interval == 0) are fetched once at start and
  again only when explicitly triggered (e.g. on a group change)

A source never has more than one fetch in flight. A trigger that arrives
while a fetch is outstanding is dropped, unless it asks for a restart, in
which case the outstanding fetch is cancelled and replaced.
"""

import asyncio
import contextlib
import logging
from typing import Optional, Union

from .datasources.base import DataSource, FetchResult
from .datasources.registry import DataSourceRegistry
from .errors import ConfigurationError, DataSourceError
from .store import SourceStateStore

logger = logging.getLogger(__name__)


class InFlightGuard:
    """Single-slot token held by the task running a source's fetch."""

    def __init__(self) -> None:
        self._owner: Optional[asyncio.Task] = None

    @property
    def busy(self) -> bool:
        return self._owner is not None and not self._owner.done()

    @property
    def owner(self) -> Optional[asyncio.Task]:
        return self._owner if self.busy else None

    def occupy(self, task: asyncio.Task) -> None:
        self._owner = task

    def release(self, task: Optional[asyncio.Task]) -> None:
        """Free the slot if ``task`` still holds it."""
        if self._owner is task:
            self._owner = None


class PollScheduler:
    """Drives every registered source and writes outcomes to the store."""

    def __init__(self, registry: DataSourceRegistry, store: SourceStateStore):
        self.registry = registry
        self.store = store
        self._guards: dict[str, InFlightGuard] = {}
        self._timers: dict[str, asyncio.Task] = {}
        self._fetches: set[asyncio.Task] = set()
        self._terminal: set[str] = set()
        self._stop_event = asyncio.Event()
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    def is_terminal(self, source_id: str) -> bool:
        """Whether the source stopped for good on a configuration error."""
        return source_id in self._terminal

    def is_in_flight(self, source_id: str) -> bool:
        guard = self._guards.get(source_id)
        return guard is not None and guard.busy

    async def start(self) -> None:
        """Initialize every enabled source and start its cadence."""
        if self._running:
            logger.warning("Scheduler already running")
            return

        self._stop_event.clear()
        self._running = True

        for source in self.registry.get_enabled():
            metadata = source.get_metadata()
            source_id = metadata.source_id
            await self.store.register(source_id, metadata.label)

            if metadata.push and hasattr(source, "add_listener"):
                source.add_listener(self._on_push)

            try:
                await source.initialize()
            except ConfigurationError as e:
                self._terminal.add(source_id)
                logger.error(f"✗ {metadata.name} disabled: {e}")
                await self.store.set_config_error(source_id, str(e))
                continue
            except Exception as e:
                logger.error(f"✗ Failed to initialize {metadata.name}: {e}")
                await self.store.set_error(source_id, f"Failed to initialize: {e}")
                continue

            logger.info(f"✓ Initialized: {metadata.name}")
            if metadata.push:
                continue
            if metadata.refresh_interval > 0:
                self._timers[source_id] = asyncio.create_task(
                    self._timer_loop(source_id, metadata.refresh_interval),
                    name=f"timer-{source_id}",
                )
            else:
                self.trigger(source_id)

        logger.info(f"Scheduler started with {len(self._timers)} timed source(s)")

    def trigger(self, source_id: str, restart: bool = False) -> bool:
        """
        Start a fetch of ``source_id`` unless one is already in flight.

        Args:
            source_id: Source to fetch
            restart: Cancel an outstanding fetch instead of dropping this trigger

        Returns:
            True if a fetch was started
        """
        if source_id in self._terminal:
            logger.debug(f"Not fetching {source_id}: configuration error")
            return False
        source = self.registry.get(source_id)
        if source is None:
            raise KeyError(source_id)
        if not source.get_metadata().enabled:
            logger.debug(f"Not fetching {source_id}: disabled")
            return False

        guard = self._guards.setdefault(source_id, InFlightGuard())
        outstanding = guard.owner
        if outstanding is not None:
            if not restart:
                logger.debug(f"Fetch of {source_id} already in flight, trigger dropped")
                return False
            logger.debug(f"Cancelling outstanding fetch of {source_id}")
            outstanding.cancel()

        task = asyncio.create_task(self._run_fetch(source_id, source, guard), name=f"fetch-{source_id}")
        guard.occupy(task)
        self._fetches.add(task)
        task.add_done_callback(self._fetches.discard)
        return True

    async def _run_fetch(self, source_id: str, source: DataSource, guard: InFlightGuard) -> None:
        try:
            await self.store.mark_loading(source_id)
            result = await source.fetch()
            await self.store.set_result(source_id, result)
            logger.debug(f"Fetched {source_id}: {len(result.history)} rows")
        except ConfigurationError as e:
            self._terminal.add(source_id)
            logger.error(f"Source {source_id} disabled: {e}")
            await self.store.set_config_error(source_id, str(e))
        except DataSourceError as e:
            logger.error(f"Error fetching {source_id}: {e}")
            await self.store.set_error(source_id, str(e))
        except Exception as e:
            logger.error(f"Unexpected error fetching {source_id}: {e}", exc_info=True)
            await self.store.set_error(source_id, f"Unexpected error: {e}")
        finally:
            guard.release(asyncio.current_task())

    async def _timer_loop(self, source_id: str, interval: float) -> None:
        """Trigger a source now and then every ``interval`` seconds."""
        logger.info(f"Polling {source_id} every {interval}s")
        while not self._stop_event.is_set():
            self.trigger(source_id)
            with contextlib.suppress(asyncio.TimeoutError):
                await asyncio.wait_for(self._stop_event.wait(), timeout=interval)
        logger.debug(f"Timer for {source_id} stopped")

    async def _on_push(self, source_id: str, outcome: Union[FetchResult, Exception]) -> None:
        if isinstance(outcome, Exception):
            await self.store.set_error(source_id, str(outcome))
        else:
            await self.store.set_result(source_id, outcome)

    async def wait_idle(self) -> None:
        """Wait for every outstanding fetch to finish."""
        while self._fetches:
            await asyncio.gather(*list(self._fetches), return_exceptions=True)

    async def stop(self) -> None:
        """Cancel timers and outstanding fetches; nothing fires afterwards."""
        if not self._running:
            return

        logger.info("Stopping scheduler...")
        self._stop_event.set()

        pending = [*self._timers.values(), *self._fetches]
        for task in pending:
            task.cancel()
        for task in pending:
            with contextlib.suppress(asyncio.CancelledError):
                await task

        self._timers.clear()
        self._running = False
        logger.info("Scheduler stopped")
