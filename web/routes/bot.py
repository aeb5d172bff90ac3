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

"""Bot control routes: status, play, disconnect."""

from aiohttp import web

from web import service
from web.common import BOT, LIBRARY, json_error, read_model
from web.schemas import BotActionResponse, BotPlayRequest


async def status(request: web.Request) -> web.Response:
    return web.json_response(service.get_bot_status(request.app[BOT]).to_json())


async def play(request: web.Request) -> web.Response:
    """Start a sound and return straight away; playback runs in the background."""
    body = await read_model(request, BotPlayRequest)

    sound = request.app[LIBRARY].get(body.sound_name)
    if sound is None:
        return json_error(404, **BotActionResponse(success=False, message="Sound not found").to_json())

    try:
        service.play_sound(request.app[BOT], sound.path)
    except service.NoVoiceChannelError as e:
        return json_error(400, **BotActionResponse(success=False, message=str(e)).to_json())

    return web.json_response(
        BotActionResponse(success=True, message=f"Playing {sound.display_name}").to_json()
    )


async def disconnect(request: web.Request) -> web.Response:
    try:
        service.disconnect_all(request.app[BOT])
    except service.NotConnectedError as e:
        return json_error(400, **BotActionResponse(success=False, message=str(e)).to_json())
    return web.json_response(
        BotActionResponse(success=True, message="Disconnected from voice channel").to_json()
    )


def setup(app: web.Application) -> None:
    app.router.add_get("/api/bot/status", status)
    app.router.add_post("/api/bot/play", play)
    app.router.add_post("/api/bot/disconnect", disconnect)
