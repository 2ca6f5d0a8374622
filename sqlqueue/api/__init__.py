"""
API module.
Contains the FastAPI inspection application and its routes.
"""

from sqlqueue.api.main import create_app, run

__all__ = ["create_app", "run"]
