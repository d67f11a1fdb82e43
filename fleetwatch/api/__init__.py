"""REST API layer for fleetwatch.

Exposes:
    create_app -- FastAPI application factory.
"""

from fleetwatch.api.app import create_app

__all__ = ["create_app"]
