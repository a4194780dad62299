"""HTTP API for flowspine (FastAPI)."""

from flowspine.api.app import create_app

__all__ = ["create_app"]
