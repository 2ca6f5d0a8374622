"""
API routes module.
"""

from sqlqueue.api.routes.health import router as health_router
from sqlqueue.api.routes.queues import router as queues_router

__all__ = ["health_router", "queues_router"]
