"""
Maintenance module.
Contains the expiration sweeper and the counter aggregator.
"""

from sqlqueue.maintenance.aggregator import CountersAggregator
from sqlqueue.maintenance.expiration import (
    ExpirationManager,
    ExpirationTarget,
    expiration_targets,
)

__all__ = [
    "CountersAggregator",
    "ExpirationManager",
    "ExpirationTarget",
    "expiration_targets",
]
