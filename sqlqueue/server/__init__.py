"""
Server module.
Contains the background processing server for maintenance tasks.
"""

from sqlqueue.server.main import BackgroundServer, run

__all__ = ["BackgroundServer", "run"]
