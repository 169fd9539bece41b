"""Web interface for the media catalog backoffice."""

from .server import create_app

__all__ = ["create_app"]
