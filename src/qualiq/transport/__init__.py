"""HTTP transport for the QualiQ service."""

from qualiq.transport.http_server import create_http_app

__all__ = ["create_http_app"]
