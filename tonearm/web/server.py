"""
Web Server Module for Tonearm.

Creates the FastAPI application and runs it under uvicorn. The app exposes:
- /health for liveness checks
- the REST API from `tonearm.web.routes.api`
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from tonearm import __version__
from tonearm.web.routes.api import register_api_routes

if TYPE_CHECKING:
    from tonearm.core.library import MusicLibrary

logger = logging.getLogger(__name__)


def create_app(music_library: MusicLibrary) -> FastAPI:
    """Build the FastAPI app for a (initialized) music library."""
    app = FastAPI(
        title="Tonearm",
        description="Music library database with full-text search",
        version=__version__,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "DELETE"],
        allow_headers=["*"],
    )

    @app.get("/health")
    async def health_check() -> dict[str, str]:
        """Health check endpoint."""
        return {"status": "ok", "server": "tonearm"}

    register_api_routes(app, music_library)
    return app


class WebServer:
    """
    uvicorn wrapper around the Tonearm app.

    `start()` runs the server in a background task; `serve()` runs it in the
    foreground until it is told to exit (used by the CLI).
    """

    def __init__(self, music_library: MusicLibrary) -> None:
        self.music_library = music_library
        self.app = create_app(music_library)

        # Server state
        self._server: uvicorn.Server | None = None
        self._task: asyncio.Task[None] | None = None
        self._host = "127.0.0.1"
        self._port = 8337

    def _make_server(self, host: str, port: int) -> uvicorn.Server:
        self._host = host
        self._port = port
        config = uvicorn.Config(
            self.app,
            host=host,
            port=port,
            log_level="warning",
            access_log=False,
        )
        self._server = uvicorn.Server(config)
        return self._server

    async def start(self, host: str = "127.0.0.1", port: int = 8337) -> None:
        """
        Start the web server in the background.

        Args:
            host: Host address to bind to
            port: Port to listen on
        """
        server = self._make_server(host, port)
        self._task = asyncio.create_task(server.serve())
        logger.info("Web server started on http://%s:%d", host, port)

    async def serve(self, host: str = "127.0.0.1", port: int = 8337) -> None:
        """Run the web server until it exits."""
        server = self._make_server(host, port)
        logger.info("Serving on http://%s:%d", host, port)
        await server.serve()

    async def stop(self) -> None:
        """Stop the web server."""
        if self._server is not None:
            self._server.should_exit = True
            self._server = None

        if self._task is not None:
            await self._task
            self._task = None

        logger.info("Web server stopped")

    @property
    def port(self) -> int:
        """Get the server port."""
        return self._port

    @property
    def host(self) -> str:
        """Get the server host."""
        return self._host
