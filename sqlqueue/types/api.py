"""
API response type definitions.
"""

from datetime import datetime

from pydantic import BaseModel, Field


class QueueListResponse(BaseModel):
    """Names of the queues that currently hold entries."""

    queues: list[str]


class QueueDepthResponse(BaseModel):
    """Number of entries in one queue."""

    queue: str
    depth: int


class EnqueuedJobsResponse(BaseModel):
    """A window of job ids in insertion order."""

    queue: str
    offset: int
    limit: int
    job_ids: list[str] = Field(default_factory=list)


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    version: str
    database: str
    table_prefix: str
    timestamp: datetime


class ReadinessResponse(BaseModel):
    """Readiness probe response."""

    ready: bool
    installed: bool
