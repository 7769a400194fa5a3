"""HTTP and WebSocket surface."""

from cronwire.api.app import create_app

__all__ = ["create_app"]
