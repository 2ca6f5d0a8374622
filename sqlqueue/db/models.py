"""
SQLAlchemy table definitions.

Every table name is namespaced by the configured table prefix, so
several logical stores can share one database. The table set for a
prefix is built once and cached.
"""

from dataclasses import dataclass
from datetime import UTC, datetime
from functools import lru_cache

from sqlalchemy import (
    BigInteger,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    UniqueConstraint,
)

# BIGINT ids on PostgreSQL; SQLite only autoincrements INTEGER PRIMARY KEY
IdType = BigInteger().with_variant(Integer, "sqlite")


def utcnow() -> datetime:
    """Current UTC time as a naive datetime, matching the stored columns."""
    return datetime.now(UTC).replace(tzinfo=None)


@dataclass(frozen=True)
class Schema:
    """
    The prefixed table set owned by one store.

    Tables:
    - job / job_parameter / job_state: job records and their children
    - job_queue: queue entries with claim metadata
    - counter / aggregated_counter: raw increments and their running sums
    - list / set / hash: keyed collections with optional expiry
    - distributed_lock: one row per held lock resource
    """

    prefix: str
    metadata: MetaData
    job: Table
    job_parameter: Table
    job_state: Table
    job_queue: Table
    counter: Table
    aggregated_counter: Table
    list: Table
    set: Table
    hash: Table
    distributed_lock: Table


def _build_schema(prefix: str) -> Schema:
    metadata = MetaData()

    job = Table(
        f"{prefix}job",
        metadata,
        Column("id", IdType, primary_key=True, autoincrement=True),
        Column("created_at", DateTime, nullable=False, default=utcnow),
        Column("expire_at", DateTime, nullable=True, index=True),
    )

    job_parameter = Table(
        f"{prefix}job_parameter",
        metadata,
        Column("id", IdType, primary_key=True, autoincrement=True),
        Column("job_id", IdType, ForeignKey(job.c.id), nullable=False, index=True),
        Column("name", String(40), nullable=False),
        Column("value", Text, nullable=True),
        UniqueConstraint("job_id", "name", name=f"uq_{prefix}job_parameter_name"),
    )

    job_state = Table(
        f"{prefix}job_state",
        metadata,
        Column("id", IdType, primary_key=True, autoincrement=True),
        Column("job_id", IdType, ForeignKey(job.c.id), nullable=False, index=True),
        Column("name", String(20), nullable=False),
        Column("reason", String(100), nullable=True),
        Column("created_at", DateTime, nullable=False, default=utcnow),
    )

    # job_id is the caller's opaque identifier, hence a string
    job_queue = Table(
        f"{prefix}job_queue",
        metadata,
        Column("id", IdType, primary_key=True, autoincrement=True),
        Column("job_id", String(255), nullable=False, index=True),
        Column("queue", String(50), nullable=False),
        Column("claimed_at", DateTime, nullable=True),
        Column("claim_token", String(36), nullable=True, index=True),
        Index(f"ix_{prefix}job_queue_fetch", "queue", "claimed_at"),
    )

    counter = Table(
        f"{prefix}counter",
        metadata,
        Column("id", IdType, primary_key=True, autoincrement=True),
        Column("key", String(255), nullable=False, index=True),
        Column("value", BigInteger, nullable=False),
        Column("expire_at", DateTime, nullable=True),
    )

    aggregated_counter = Table(
        f"{prefix}aggregated_counter",
        metadata,
        Column("id", IdType, primary_key=True, autoincrement=True),
        Column("key", String(255), nullable=False, unique=True),
        Column("value", BigInteger, nullable=False),
        Column("expire_at", DateTime, nullable=True, index=True),
    )

    list_table = Table(
        f"{prefix}list",
        metadata,
        Column("id", IdType, primary_key=True, autoincrement=True),
        Column("key", String(255), nullable=False, index=True),
        Column("value", Text, nullable=True),
        Column("expire_at", DateTime, nullable=True, index=True),
    )

    set_table = Table(
        f"{prefix}set",
        metadata,
        Column("id", IdType, primary_key=True, autoincrement=True),
        Column("key", String(255), nullable=False),
        Column("value", String(255), nullable=False),
        Column("score", Float, nullable=False, default=0.0),
        Column("expire_at", DateTime, nullable=True, index=True),
        UniqueConstraint("key", "value", name=f"uq_{prefix}set_key_value"),
    )

    hash_table = Table(
        f"{prefix}hash",
        metadata,
        Column("id", IdType, primary_key=True, autoincrement=True),
        Column("key", String(255), nullable=False),
        Column("field", String(100), nullable=False),
        Column("value", Text, nullable=True),
        Column("expire_at", DateTime, nullable=True, index=True),
        UniqueConstraint("key", "field", name=f"uq_{prefix}hash_key_field"),
    )

    distributed_lock = Table(
        f"{prefix}distributed_lock",
        metadata,
        Column("resource", String(100), primary_key=True),
        Column("owner", String(36), nullable=False),
        Column("acquired_at", DateTime, nullable=False),
    )

    return Schema(
        prefix=prefix,
        metadata=metadata,
        job=job,
        job_parameter=job_parameter,
        job_state=job_state,
        job_queue=job_queue,
        counter=counter,
        aggregated_counter=aggregated_counter,
        list=list_table,
        set=set_table,
        hash=hash_table,
        distributed_lock=distributed_lock,
    )


@lru_cache
def get_schema(prefix: str = "") -> Schema:
    """
    Get the table set for a table prefix.

    Args:
        prefix: Namespace prepended to every table name.

    Returns:
        Schema: The cached table set for this prefix.
    """
    return _build_schema(prefix)
