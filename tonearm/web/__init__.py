"""
Tonearm Web Layer.

This package provides a small read-mostly HTTP API over the library, for web
UIs and scripts.

Components:
- create_app: FastAPI application factory with all routes
- WebServer: runs the application with uvicorn
"""

from tonearm.web.server import WebServer, create_app

__all__ = [
    "WebServer",
    "create_app",
]
