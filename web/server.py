# Copyright (C) 2026 grodz
#
# This file is part of Button Gremlin.
#
# Button Gremlin is free software: you can redistribute it and/or modify
# it under the terms of the GNU General Public License as published by
# the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.
#
# This program is distributed in the hope that it will be useful,
# but WITHOUT ANY WARRANTY; without even the implied warranty of
# MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE. See the
# GNU General Public License for more details.
#
# You should have received a copy of the GNU General Public License
# along with this program. If not, see <https://www.gnu.org/licenses/>.

"""
HTTP API server for the web soundboard.

Runs on the bot's event loop. Every /api route except /api/auth/verify needs
"Authorization: Bearer <api key>". When a built front-end exists at
static_path it is served at /, with index.html for unknown non-API paths.
"""

import secrets
from pathlib import Path

from aiohttp import web
from loguru import logger

from utils.library import SoundLibrary
from web.common import API_KEY, BOT, LIBRARY, MAX_UPLOAD_BYTES, json_error
from web.routes import auth, bot as bot_routes, sounds


PUBLIC_PATHS = frozenset({"/api/auth/verify"})

# Multipart framing on top of the file itself
UPLOAD_OVERHEAD = 1024 * 1024


@web.middleware
async def auth_middleware(request: web.Request, handler):
    """Bearer key check for /api routes."""
    if not request.path.startswith("/api/") or request.path in PUBLIC_PATHS:
        return await handler(request)

    header = request.headers.get("Authorization", "")
    if not header.startswith("Bearer "):
        return json_error(401, error="Unauthorized")

    token = header[len("Bearer "):]
    if not secrets.compare_digest(token.encode(), request.app[API_KEY].encode()):
        return json_error(401, error="Invalid API key")

    return await handler(request)


def _static_handler(root: Path):
    root = root.resolve()
    index = root / "index.html"

    async def serve(request: web.Request) -> web.StreamResponse:
        if request.path.startswith("/api"):
            return json_error(404, error="Not found")

        candidate = (root / request.match_info["tail"]).resolve()
        if candidate.is_file() and candidate.is_relative_to(root):
            return web.FileResponse(candidate)
        if index.is_file():
            return web.FileResponse(index)
        return json_error(404, error="Not found")

    return serve


def create_app(bot, library: SoundLibrary, api_key: str, *,
               max_upload_mb: int = 10, static_path: Path | None = None) -> web.Application:
    """Build the aiohttp application (no sockets opened)."""
    max_bytes = max_upload_mb * 1024 * 1024
    app = web.Application(
        middlewares=[auth_middleware],
        client_max_size=max_bytes + UPLOAD_OVERHEAD,
    )
    app[BOT] = bot
    app[LIBRARY] = library
    app[API_KEY] = api_key
    app[MAX_UPLOAD_BYTES] = max_bytes

    auth.setup(app)
    sounds.setup(app)
    bot_routes.setup(app)

    if static_path is not None and Path(static_path).is_dir():
        app.router.add_get("/{tail:.*}", _static_handler(Path(static_path)))
        logger.debug(f"serving front-end from {static_path}")

    return app


class WebServer:
    """Starts and stops the HTTP API alongside the Discord bot."""

    def __init__(self, bot, library: SoundLibrary, *, host: str, port: int, api_key: str,
                 max_upload_mb: int = 10, static_path: Path | None = None) -> None:
        if not api_key:
            raise ValueError("WEB_API_KEY is required when the web API is enabled")
        self.host = host
        self.port = port
        self.app = create_app(
            bot, library, api_key,
            max_upload_mb=max_upload_mb,
            static_path=static_path,
        )
        self.runner: web.AppRunner | None = None
        self.site: web.TCPSite | None = None

    async def start(self) -> None:
        """Start serving. Bind failures are logged and re-raised."""
        try:
            self.runner = web.AppRunner(self.app, access_log=None)
            await self.runner.setup()
            self.site = web.TCPSite(self.runner, self.host, self.port)
            await self.site.start()
        except OSError:
            logger.opt(exception=True).error(f"failed to start web api on {self.host}:{self.port}")
            raise
        logger.info(f"web api listening on http://{self.host}:{self.port}")

    async def stop(self) -> None:
        if self.site:
            await self.site.stop()
            self.site = None
        if self.runner:
            await self.runner.cleanup()
            self.runner = None
        logger.info("web api stopped")
