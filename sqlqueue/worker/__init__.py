"""
Worker module.
Contains the consumer claim loop.
"""

from sqlqueue.worker.main import Worker, run

__all__ = ["Worker", "run"]
