"""
HTTP front-end for Kolam.

FastAPI routes under /api/v1 over the stores and the bridge service.
"""

from .app import create_app
from .config import Settings

__all__ = ["Settings", "create_app"]
