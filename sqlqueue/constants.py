"""
Application constants.
Centralized location for all constant values used across the application.
"""

from enum import StrEnum


class ExpiryKind(StrEnum):
    """
    How the expiration sweeper decides a row is stale.

    - DIRECT: the row carries its own expire_at
    - PARENT_JOB: the row belongs to a job whose expire_at has passed
    """

    DIRECT = "direct"
    PARENT_JOB = "parent_job"


# Lock resource shared by queue consumers and the expiration sweeper
QUEUE_LOCK_RESOURCE = "JobQueue"

# Queue names listing is cached to bound read amplification
QUEUE_NAMES_CACHE_TTL_SECONDS = 5.0

# Default values
DEFAULT_QUEUE = "default"
DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 500

# API constants
API_V1_PREFIX = "/v1"

# Metrics names
METRIC_QUEUE_DEPTH = "queue_depth"
METRIC_ENTRIES_ENQUEUED = "queue_entries_enqueued_total"
METRIC_ENTRIES_CLAIMED = "queue_entries_claimed_total"
METRIC_EMPTY_POLLS = "queue_empty_polls_total"
METRIC_LOCK_WAIT = "distributed_lock_wait_seconds"
METRIC_LOCK_TIMEOUTS = "distributed_lock_timeouts_total"
METRIC_RECORDS_EXPIRED = "records_expired_total"
METRIC_COUNTERS_AGGREGATED = "counters_aggregated_total"
METRIC_MAINTENANCE_ERRORS = "maintenance_errors_total"

# Trace span names
SPAN_DEQUEUE = "dequeue"
SPAN_EXPIRATION_SWEEP = "expiration_sweep"
SPAN_AGGREGATE_COUNTERS = "aggregate_counters"
