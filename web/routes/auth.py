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

"""API key verification (the only unauthenticated /api route)."""

import secrets

from aiohttp import web

from web.common import API_KEY, json_error, read_model
from web.schemas import AuthVerifyRequest, AuthVerifyResponse


async def verify(request: web.Request) -> web.Response:
    body = await read_model(request, AuthVerifyRequest)
    if secrets.compare_digest(body.key.encode(), request.app[API_KEY].encode()):
        return web.json_response(AuthVerifyResponse(valid=True).to_json())
    return json_error(401, **AuthVerifyResponse(valid=False, error="Invalid API key").to_json())


def setup(app: web.Application) -> None:
    app.router.add_post("/api/auth/verify", verify)
