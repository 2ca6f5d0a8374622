"""
Health, readiness and metrics routes.
"""

from fastapi import APIRouter, Depends
from fastapi.responses import Response
from sqlalchemy import select, text
from sqlalchemy.exc import DBAPIError

from sqlqueue import __version__
from sqlqueue.api.deps import get_storage
from sqlqueue.db import Storage, utcnow
from sqlqueue.observability.metrics import get_metrics
from sqlqueue.types.api import HealthResponse, ReadinessResponse

router = APIRouter(tags=["Health"])


async def _database_reachable(storage: Storage) -> bool:
    try:
        async with storage.session() as session:
            await session.execute(text("SELECT 1"))
    except (DBAPIError, OSError):
        return False
    return True


async def _store_installed(storage: Storage) -> bool:
    """True when the queue table can be read, i.e. install() has run."""
    table = storage.schema.job_queue
    try:
        async with storage.session() as session:
            await session.execute(select(table.c.id).limit(1))
    except (DBAPIError, OSError):
        return False
    return True


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
    description="Check the API and its database connection.",
)
async def health_check(storage: Storage = Depends(get_storage)) -> HealthResponse:
    """
    Report service status.

    The service is degraded, not down, while the database is unreachable:
    the process itself keeps answering.
    """
    reachable = await _database_reachable(storage)

    return HealthResponse(
        status="healthy" if reachable else "degraded",
        version=__version__,
        database="healthy" if reachable else "unhealthy",
        table_prefix=storage.schema.prefix,
        timestamp=utcnow(),
    )


@router.get(
    "/ready",
    response_model=ReadinessResponse,
    summary="Readiness check",
    description="Ready once the database answers and the store's tables exist.",
)
async def readiness_check(storage: Storage = Depends(get_storage)) -> ReadinessResponse:
    installed = await _store_installed(storage)
    return ReadinessResponse(ready=installed, installed=installed)


@router.get(
    "/live",
    summary="Liveness check",
)
async def liveness_check() -> dict:
    return {"alive": True}


@router.get(
    "/metrics",
    summary="Prometheus metrics",
    description="Queue, lock and maintenance metrics in Prometheus text format.",
)
async def metrics() -> Response:
    collector = get_metrics()
    return Response(
        content=collector.get_metrics(),
        media_type=collector.get_content_type(),
    )
