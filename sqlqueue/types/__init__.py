"""
Type definitions for the queue engine's HTTP surface.
"""

from sqlqueue.types.api import (
    EnqueuedJobsResponse,
    HealthResponse,
    QueueDepthResponse,
    QueueListResponse,
    ReadinessResponse,
)

__all__ = [
    "QueueListResponse",
    "QueueDepthResponse",
    "EnqueuedJobsResponse",
    "HealthResponse",
    "ReadinessResponse",
]
