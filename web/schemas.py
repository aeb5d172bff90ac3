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
Pydantic schemas for HTTP API request/response models.

Field names are snake_case in Python and camelCase on the wire; dump with
by_alias=True.
"""

from pydantic import BaseModel, ConfigDict, Field

from utils.library import SoundFile


class ApiModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    def to_json(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")


# Auth schemas
class AuthVerifyRequest(ApiModel):
    key: str


class AuthVerifyResponse(ApiModel):
    valid: bool
    error: str | None = None


# Sound schemas
class SoundInfo(ApiModel):
    """One sound as the front-end sees it."""

    name: str
    display_name: str = Field(alias="displayName")
    size: int
    uploaded_at: str = Field(alias="uploadedAt")
    tags: list[str] = Field(default_factory=list)

    @classmethod
    def from_sound(cls, sound: SoundFile) -> "SoundInfo":
        return cls(
            name=sound.name,
            display_name=sound.display_name,
            size=sound.size,
            uploaded_at=sound.uploaded_at.isoformat().replace("+00:00", "Z"),
            tags=list(sound.tags),
        )


class SoundResponse(ApiModel):
    """Response for upload and tag updates."""

    success: bool = True
    sound: SoundInfo


class TagsUpdateRequest(ApiModel):
    tags: list[str]


class ErrorResponse(ApiModel):
    success: bool = False
    error: str


# Bot schemas
class BotStatus(ApiModel):
    online: bool
    connected: bool
    channel_name: str | None = Field(default=None, alias="channelName")
    guild_name: str | None = Field(default=None, alias="guildName")


class BotPlayRequest(ApiModel):
    sound_name: str = Field(alias="soundName", min_length=1)


class BotActionResponse(ApiModel):
    success: bool
    message: str
