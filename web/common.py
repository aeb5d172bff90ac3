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

"""Shared pieces for the HTTP API: app keys and JSON helpers."""

import json

from aiohttp import web
from pydantic import BaseModel, ValidationError

from utils.library import SoundLibrary


BOT = web.AppKey("bot", object)
LIBRARY = web.AppKey("library", SoundLibrary)
API_KEY = web.AppKey("api_key", str)
MAX_UPLOAD_BYTES = web.AppKey("max_upload_bytes", int)


def json_error(status: int, **body) -> web.Response:
    return web.json_response(body, status=status)


async def read_model(request: web.Request, model: type[BaseModel]) -> BaseModel:
    """
    Parse and validate a JSON body.

    Raises:
        web.HTTPBadRequest: Body is not JSON or does not match the model
    """
    try:
        payload = await request.json()
        return model.model_validate(payload)
    except (json.JSONDecodeError, ValidationError) as e:
        raise web.HTTPBadRequest(
            text=json.dumps({"success": False, "error": f"Invalid request body: {e}"}),
            content_type="application/json",
        ) from e
