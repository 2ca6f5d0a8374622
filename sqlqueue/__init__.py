"""
SQL-backed work queue engine.

Many independent workers claim entries from shared durable storage with
at-most-one active claim per entry, while background maintenance expires
stale rows and folds counter increments into totals.
"""

__version__ = "1.0.0"
