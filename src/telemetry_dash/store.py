"""
Consumer-facing state per data source.

Every source owns one SourceState. A fetch result or an error fully replaces
it, and updating one source never touches another.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Literal

from pydantic import BaseModel, Field

from .datasources.base import FetchResult

logger = logging.getLogger(__name__)

Status = Literal["loading", "ok", "no_data", "error", "config_error"]


class SourceState(BaseModel):
    """What the rendering layer gets for one source."""

    source_id: str
    label: str = ""
    status: Status = "loading"
    latest: dict[str, Any] | None = None
    history: list[dict[str, Any]] = Field(default_factory=list)
    loading: bool = True
    fetching: bool = False
    error: str | None = None
    updated_at: float | None = None
    fetch_count: int = 0
    error_count: int = 0

    @property
    def age(self) -> float | None:
        """Seconds since the last update, None before the first one."""
        if self.updated_at is None:
            return None
        return time.time() - self.updated_at

    def to_output(self) -> dict[str, Any]:
        """The ``{latest, history, loading, error}`` view of this state."""
        return {
            "latest": self.latest,
            "history": self.history,
            "loading": self.loading,
            "error": self.error,
        }


class SourceStateStore:
    """Async-safe map of source id to its current state."""

    def __init__(self) -> None:
        self._states: dict[str, SourceState] = {}
        self._lock = asyncio.Lock()

    async def register(self, source_id: str, label: str = "") -> None:
        """Create the initial ``loading`` state of a source."""
        async with self._lock:
            self._states[source_id] = SourceState(source_id=source_id, label=label)
            logger.debug(f"State registered: {source_id}")

    def _replace(self, source_id: str, **changes: Any) -> SourceState:
        current = self._states.get(source_id) or SourceState(source_id=source_id)
        state = current.model_copy(update=changes)
        self._states[source_id] = state
        return state

    async def mark_loading(self, source_id: str) -> None:
        """Flag a fetch as outstanding. Data stays visible while it runs."""
        async with self._lock:
            current = self._states.get(source_id)
            first = current is None or current.updated_at is None
            self._replace(source_id, fetching=True, loading=first)

    async def set_result(self, source_id: str, result: FetchResult) -> SourceState:
        """Replace the state with a successful fetch result."""
        async with self._lock:
            current = self._states.get(source_id)
            status: Status = "no_data" if result.is_empty else "ok"
            state = self._replace(
                source_id,
                status=status,
                latest=result.latest,
                history=list(result.history),
                loading=False,
                fetching=False,
                error=None,
                updated_at=time.time(),
                fetch_count=(current.fetch_count if current else 0) + 1,
            )
            logger.debug(f"State updated: {source_id} ({status}, {len(state.history)} rows)")
            return state

    async def set_error(
        self, source_id: str, message: str, status: Status = "error"
    ) -> SourceState:
        """Replace the state with an error. The source's data is cleared."""
        async with self._lock:
            current = self._states.get(source_id)
            state = self._replace(
                source_id,
                status=status,
                latest=None,
                history=[],
                loading=False,
                fetching=False,
                error=message,
                updated_at=time.time(),
                error_count=(current.error_count if current else 0) + 1,
            )
            logger.debug(f"State error: {source_id} ({status}: {message})")
            return state

    async def set_config_error(self, source_id: str, message: str) -> SourceState:
        """Mark a source as unusable until its configuration is fixed."""
        return await self.set_error(source_id, message, status="config_error")

    async def get(self, source_id: str) -> SourceState | None:
        """Current state of a source, or None if not registered."""
        async with self._lock:
            return self._states.get(source_id)

    async def get_all(self) -> dict[str, SourceState]:
        """Current state of every source."""
        async with self._lock:
            return dict(self._states)

    async def get_status(self) -> dict[str, Any]:
        """
        Get store status information.

        Returns:
            Dictionary with per-source status, ages and counters
        """
        async with self._lock:
            return {
                "total_sources": len(self._states),
                "sources": {
                    source_id: {
                        "status": state.status,
                        "fetching": state.fetching,
                        "age": state.age,
                        "rows": len(state.history),
                        "fetch_count": state.fetch_count,
                        "error_count": state.error_count,
                        "error": state.error,
                    }
                    for source_id, state in self._states.items()
                },
            }

    async def clear(self) -> None:
        """Drop every state."""
        async with self._lock:
            self._states.clear()
            logger.info("State store cleared")
