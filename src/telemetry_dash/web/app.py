"""FastAPI application for the telemetry-dash JSON API."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from telemetry_dash import __version__
from telemetry_dash.context import AppContext

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Manage application lifespan.

    NOTE: Data sources and the scheduler are managed by AppContext, NOT here.
    The context is created and started by the CLI before the web app starts.
    """
    logger.info("Web application starting...")
    context: AppContext = app.state.context
    if not context.is_started:
        logger.warning("AppContext provided but not started - no data will be fetched")
    else:
        logger.info(f"Serving {len(context.registry)} data source(s)")

    yield

    logger.info("Web application shutting down...")


def create_app(context: AppContext) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        context: Application context with config, store and data sources

    Example:
        context = AppContext.from_config(config)
        await context.start()
        app = create_app(context)
    """
    app = FastAPI(
        title="telemetry-dash",
        description="Live values and history from push, REST and weather-station sources",
        version=__version__,
        lifespan=lifespan,
    )

    # Store context in app.state for access in request handlers
    app.state.context = context

    origins = context.config.web.cors_origins
    if origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=origins,
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    from telemetry_dash.web.routes import router

    app.include_router(router)

    logger.info("FastAPI application created")
    return app
