"""
Database module.
Contains storage access, table definitions, the distributed lock and
the record repository.
"""

from sqlqueue.db.connection import Storage, create_engine_from_settings, get_test_engine
from sqlqueue.db.lock import DistributedLock, LockHandle
from sqlqueue.db.models import Schema, get_schema, utcnow
from sqlqueue.db.repository import StorageRepository

__all__ = [
    "Storage",
    "create_engine_from_settings",
    "get_test_engine",
    "DistributedLock",
    "LockHandle",
    "Schema",
    "get_schema",
    "utcnow",
    "StorageRepository",
]
