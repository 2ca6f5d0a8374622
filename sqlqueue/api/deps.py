"""
FastAPI dependencies resolving the store attached to the application.
"""

from fastapi import HTTPException, Request, status

from sqlqueue.db import Storage
from sqlqueue.queue import QueueMonitoringApi


def get_storage(request: Request) -> Storage:
    """
    Get the store the application was started with.

    Raises:
        HTTPException: 503 if the application has no store yet.
    """
    storage = getattr(request.app.state, "storage", None)
    if storage is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Storage not initialized",
        )
    return storage


def get_monitoring_api(request: Request) -> QueueMonitoringApi:
    """Get the application's shared inspection API (and its name cache)."""
    monitoring = getattr(request.app.state, "monitoring", None)
    if monitoring is None:
        monitoring = get_storage(request).get_monitoring_api()
        request.app.state.monitoring = monitoring
    return monitoring
