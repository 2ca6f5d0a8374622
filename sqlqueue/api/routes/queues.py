"""
Queue inspection routes.
"""

from fastapi import APIRouter, Depends, Query

from sqlqueue.api.deps import get_monitoring_api
from sqlqueue.constants import API_V1_PREFIX, DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE
from sqlqueue.queue import QueueMonitoringApi
from sqlqueue.types.api import (
    EnqueuedJobsResponse,
    QueueDepthResponse,
    QueueListResponse,
)

router = APIRouter(prefix=f"{API_V1_PREFIX}/queues", tags=["Queues"])


@router.get(
    "",
    response_model=QueueListResponse,
    summary="List queues",
    description="List the names of queues holding entries (cached for a few seconds).",
)
async def list_queues(
    monitoring: QueueMonitoringApi = Depends(get_monitoring_api),
) -> QueueListResponse:
    return QueueListResponse(queues=await monitoring.list_queue_names())


@router.get(
    "/{queue}",
    response_model=QueueDepthResponse,
    summary="Queue depth",
)
async def get_queue_depth(
    queue: str,
    monitoring: QueueMonitoringApi = Depends(get_monitoring_api),
) -> QueueDepthResponse:
    return QueueDepthResponse(queue=queue, depth=await monitoring.get_depth(queue))


@router.get(
    "/{queue}/jobs",
    response_model=EnqueuedJobsResponse,
    summary="Enqueued job ids",
    description="Job ids in insertion order within the requested window.",
)
async def list_enqueued_jobs(
    queue: str,
    offset: int = Query(default=0, ge=0),
    limit: int = Query(default=DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    monitoring: QueueMonitoringApi = Depends(get_monitoring_api),
) -> EnqueuedJobsResponse:
    """
    Get a page of job ids from a queue.

    Args:
        queue: Queue name.
        offset: Entries to skip.
        limit: Page size.
        monitoring: Inspection API.

    Returns:
        EnqueuedJobsResponse with the ids in the window.
    """
    job_ids = await monitoring.get_enqueued_job_ids(queue, offset, limit)
    return EnqueuedJobsResponse(
        queue=queue,
        offset=offset,
        limit=limit,
        job_ids=job_ids,
    )
