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

"""Sound library routes: list, tags, stream, upload, delete."""

from urllib.parse import unquote

from aiohttp import web
from loguru import logger

from utils.library import InvalidSoundError, LibraryError, SoundNotFoundError, is_allowed_extension
from web.common import LIBRARY, MAX_UPLOAD_BYTES, json_error, read_model
from web.schemas import ErrorResponse, SoundInfo, SoundResponse, TagsUpdateRequest


ALLOWED_TYPES = (
    'audio/mpeg',
    'audio/wav',
    'audio/ogg',
    'audio/mp4',
    'audio/flac',
    'audio/webm',
    'audio/opus',
)


async def list_sounds(request: web.Request) -> web.Response:
    sounds = request.app[LIBRARY].list_sounds()
    return web.json_response([SoundInfo.from_sound(s).to_json() for s in sounds])


async def list_tags(request: web.Request) -> web.Response:
    return web.json_response(request.app[LIBRARY].all_tags())


async def stream_sound(request: web.Request) -> web.StreamResponse:
    sound = request.app[LIBRARY].get(request.match_info["name"])
    if sound is None or not sound.path.exists():
        return json_error(404, error="Sound not found")
    return web.FileResponse(sound.path)


async def upload_sound(request: web.Request) -> web.Response:
    """Accept one multipart field named "file"."""
    max_bytes = request.app[MAX_UPLOAD_BYTES]

    if not request.content_type.startswith("multipart/"):
        return json_error(400, **ErrorResponse(error="No file uploaded").to_json())
    try:
        reader = await request.multipart()
    except ValueError:
        return json_error(400, **ErrorResponse(error="Malformed multipart body").to_json())

    field = await reader.next()
    while field is not None and field.name != "file":
        field = await reader.next()
    if field is None or not field.filename:
        return json_error(400, **ErrorResponse(error="No file uploaded").to_json())

    # aiohttp clients percent-encode the filename by default
    filename = unquote(field.filename)
    content_type = field.headers.get("Content-Type", "")
    if content_type not in ALLOWED_TYPES and not is_allowed_extension(filename):
        return json_error(400, **ErrorResponse(
            error="Invalid file type. Allowed: mp3, wav, ogg, m4a, flac, webm, opus"
        ).to_json())

    chunks = []
    size = 0
    while chunk := await field.read_chunk():
        size += len(chunk)
        if size > max_bytes:
            await field.release()
            return json_error(400, **ErrorResponse(
                error=f"File too large. Maximum size is {max_bytes // (1024 * 1024)}MB"
            ).to_json())
        chunks.append(chunk)

    try:
        sound = await request.app[LIBRARY].save(filename, b"".join(chunks))
    except InvalidSoundError as e:
        return json_error(400, **ErrorResponse(error=str(e)).to_json())
    except LibraryError:
        logger.opt(exception=True).error(f"upload of {filename} failed")
        return json_error(500, **ErrorResponse(error="Failed to save sound").to_json())

    return web.json_response(SoundResponse(sound=SoundInfo.from_sound(sound)).to_json())


async def update_tags(request: web.Request) -> web.Response:
    body = await read_model(request, TagsUpdateRequest)
    try:
        sound = await request.app[LIBRARY].set_tags(request.match_info["name"], body.tags)
    except SoundNotFoundError:
        return json_error(404, **ErrorResponse(error="Sound not found").to_json())
    except OSError:
        logger.opt(exception=True).error("failed to save tags")
        return json_error(500, **ErrorResponse(error="Failed to update tags").to_json())
    return web.json_response(SoundResponse(sound=SoundInfo.from_sound(sound)).to_json())


async def delete_sound(request: web.Request) -> web.Response:
    try:
        await request.app[LIBRARY].delete(request.match_info["name"])
    except SoundNotFoundError:
        return json_error(404, error="Sound not found")
    except LibraryError:
        logger.opt(exception=True).error("failed to delete sound")
        return json_error(500, error="Failed to delete sound")
    return web.json_response({"success": True})


def setup(app: web.Application) -> None:
    app.router.add_get("/api/sounds", list_sounds)
    app.router.add_get("/api/sounds/tags", list_tags)
    app.router.add_get("/api/sounds/{name}/stream", stream_sound)
    app.router.add_post("/api/sounds/upload", upload_sound)
    app.router.add_put("/api/sounds/{name}/tags", update_tags)
    app.router.add_delete("/api/sounds/{name}", delete_sound)
