"""FastAPI dependencies for the web API."""

from __future__ import annotations

from typing import Annotated

from fastapi import Depends, HTTPException, Request, status

from telemetry_dash.context import AppContext
from telemetry_dash.datasources.rest_poll_source import RestPollingDataSource
from telemetry_dash.store import SourceStateStore


def get_context(request: Request) -> AppContext:
    """Get the AppContext from app state."""
    return request.app.state.context


def get_store(request: Request) -> SourceStateStore:
    """Get the state store from app state."""
    return get_context(request).store


def get_rest_source(context: Annotated[AppContext, Depends(get_context)]) -> RestPollingDataSource:
    """Get the REST polling source, 404 when it is not registered."""
    source = context.rest_source()
    if source is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="No REST polling source configured",
        )
    return source


# Type aliases for use in route signatures
Context = Annotated[AppContext, Depends(get_context)]
Store = Annotated[SourceStateStore, Depends(get_store)]
RestSource = Annotated[RestPollingDataSource, Depends(get_rest_source)]
