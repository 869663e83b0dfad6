"""API routes for source states, metrics and sensor groups"""

import asyncio
import logging
from dataclasses import asdict
from typing import Any

from fastapi import APIRouter, HTTPException, WebSocket, WebSocketDisconnect, status
from pydantic import BaseModel

from telemetry_dash.store import SourceState, SourceStateStore
from telemetry_dash.web.deps import Context, RestSource, Store

logger = logging.getLogger(__name__)
router = APIRouter()


class GroupSelection(BaseModel):
    group_id: str


async def _get_state(store: SourceStateStore, source_id: str) -> SourceState:
    state = await store.get(source_id)
    if state is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Source '{source_id}' not found",
        )
    return state


async def _snapshot(store: SourceStateStore) -> dict[str, Any]:
    """All source states, keyed by source id."""
    states = await store.get_all()
    return {source_id: state.model_dump() for source_id, state in sorted(states.items())}


@router.get("/health")
async def health_check(context: Context) -> dict[str, Any]:
    """Health check endpoint - always succeeds while the app is serving"""
    return {
        "status": "healthy",
        "started": context.is_started,
        "sources": len(context.registry),
    }


@router.get("/api/sources")
async def get_sources(store: Store) -> dict[str, Any]:
    """State of every source"""
    return await _snapshot(store)


@router.get("/api/sources/{source_id}")
async def get_source(source_id: str, store: Store) -> dict[str, Any]:
    """State of one source"""
    state = await _get_state(store, source_id)
    return state.model_dump()


@router.get("/api/sources/{source_id}/metrics")
async def get_source_metrics(source_id: str, context: Context) -> list[dict[str, Any]]:
    """Metrics a source puts on its history rows (key, name, unit)"""
    source = context.get_data_source(source_id)
    if source is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Source '{source_id}' not found",
        )
    return [asdict(metric) for metric in source.get_metadata().metrics]


@router.get("/api/sources/{source_id}/health")
async def get_source_health(source_id: str, context: Context) -> dict[str, Any]:
    """Probe the upstream of a source with a lightweight request"""
    source = context.get_data_source(source_id)
    if source is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Source '{source_id}' not found",
        )
    return {"source_id": source_id, "healthy": await source.health_check()}


@router.post("/api/sources/{source_id}/refresh")
async def refresh_source(source_id: str, context: Context, store: Store) -> dict[str, Any]:
    """Trigger a fetch now; dropped while one is already in flight"""
    await _get_state(store, source_id)
    if context.scheduler.is_terminal(source_id):
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Source '{source_id}' has a configuration error",
        )
    return {"triggered": context.refresh(source_id)}


@router.get("/api/groups")
async def get_groups(source: RestSource) -> dict[str, Any]:
    """Configured sensor groups of the REST platform"""
    return {
        "selected": source.selected_group,
        "groups": [
            {
                "group_id": group.group_id,
                "name": group.name,
                "sensors": [sensor.label for sensor in group.sensors],
            }
            for group in source.groups
        ],
    }


@router.put("/api/groups/selected")
async def select_group(selection: GroupSelection, context: Context, source: RestSource) -> dict[str, Any]:
    """Select the sensor group shown by the REST source and re-fetch it"""
    try:
        triggered = context.select_group(selection.group_id)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e)) from e
    return {"selected": source.selected_group, "triggered": triggered}


@router.get("/api/status")
async def get_status(store: Store) -> dict[str, Any]:
    """Store status: per-source status, ages and counters"""
    return await store.get_status()


# ============================================================================
# WebSocket Endpoints
# ============================================================================


@router.websocket("/ws/sources")
async def sources_websocket(websocket: WebSocket):
    """Push the state of every source every web.push_interval seconds"""
    await websocket.accept()
    context = websocket.app.state.context
    interval = context.config.web.push_interval

    try:
        while True:
            await websocket.send_json(await _snapshot(context.store))
            await asyncio.sleep(interval)
    except WebSocketDisconnect:
        logger.debug("WebSocket /ws/sources disconnected")
