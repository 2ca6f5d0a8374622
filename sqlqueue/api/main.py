"""
FastAPI application entry point for the read-only inspection surface.
"""

from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI

from sqlqueue import __version__
from sqlqueue.api.routes import health_router, queues_router
from sqlqueue.config import get_settings
from sqlqueue.db import Storage
from sqlqueue.observability.logging import get_logger, setup_logging
from sqlqueue.observability.metrics import setup_metrics
from sqlqueue.observability.tracing import (
    instrument_fastapi,
    instrument_sqlalchemy,
    setup_tracing,
    shutdown_tracing,
)

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    Opens the store on startup unless one was injected, and disposes of
    it on shutdown if this application created it.
    """
    owns_storage = getattr(app.state, "storage", None) is None
    if owns_storage:
        app.state.storage = Storage()
    settings = app.state.storage.settings

    setup_logging(settings)
    setup_metrics()
    setup_tracing(settings)
    instrument_sqlalchemy(app.state.storage.engine)
    app.state.monitoring = app.state.storage.get_monitoring_api()

    logger.info("Application started", storage=repr(app.state.storage))

    yield

    if owns_storage:
        await app.state.storage.dispose()
        app.state.storage = None
    shutdown_tracing()
    logger.info("Application shutdown")


def create_app(storage: Storage | None = None) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        storage: Optional store to serve. Created at startup when omitted.

    Returns:
        FastAPI: The configured application instance.
    """
    app = FastAPI(
        title="SQL Queue Inspection API",
        description="Read-only queue depth and membership queries",
        version=__version__,
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
    )
    app.state.storage = storage
    app.state.monitoring = storage.get_monitoring_api() if storage is not None else None

    app.include_router(health_router)
    app.include_router(queues_router)

    instrument_fastapi(app)

    return app


def run() -> None:
    """Run the API server."""
    settings = get_settings()
    app = create_app()

    uvicorn.run(
        app,
        host=settings.api_host,
        port=settings.api_port,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    run()
