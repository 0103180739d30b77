"""HTTP server for dashsnap."""

from dashsnap.server.app import build_app, create_app

__all__ = ["build_app", "create_app"]
