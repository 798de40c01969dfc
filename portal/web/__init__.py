"""Web interface for the Study Portal."""

from .server import create_app

__all__ = ["create_app"]
