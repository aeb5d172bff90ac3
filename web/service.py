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

"""Bot actions behind the /api/bot routes.

These only read bot state and call into bot.voice; they never touch the
voice registries directly.
"""

import asyncio
from pathlib import Path

import discord
from loguru import logger

from core.transport import ConnectionStatus, VoiceConnection
from web.schemas import BotStatus


# Track fire-and-forget playback tasks to prevent GC warnings
_playback_tasks: set[asyncio.Task] = set()


class NotConnectedError(Exception):
    """The bot is not in any voice channel."""


class NoVoiceChannelError(Exception):
    """No voice channel the bot could join to play."""


def _ready_connection(bot) -> VoiceConnection | None:
    """First tracked connection that can play right now."""
    for guild_id in bot.voice.guild_ids():
        connection = bot.voice.get_connection(guild_id)
        if connection is not None and connection.status is ConnectionStatus.READY:
            return connection
    return None


def get_bot_status(bot) -> BotStatus:
    """Online flag plus the voice channel the bot sits in, if any."""
    online = bot.is_ready()

    connection = _ready_connection(bot)
    if connection is None:
        return BotStatus(online=online, connected=False)

    guild = bot.get_guild(connection.guild_id)
    channel = guild.get_channel(connection.channel_id) if guild else None
    return BotStatus(
        online=online,
        connected=True,
        channel_name=channel.name if channel else None,
        guild_name=guild.name if guild else None,
    )


def find_voice_channel(bot) -> discord.VoiceChannel:
    """
    Pick a channel to join when the bot is not connected anywhere.

    First voice channel with people in it, without the bot, where the bot
    may connect and speak.

    Raises:
        NoVoiceChannelError: Nothing suitable in any guild
    """
    for guild in bot.guilds:
        me = guild.me
        if me is None:
            continue
        for channel in guild.voice_channels:
            members = channel.members
            if not any(not m.bot for m in members):
                continue
            if any(m.id == me.id for m in members):
                continue
            permissions = channel.permissions_for(me)
            if permissions.connect and permissions.speak:
                return channel
    raise NoVoiceChannelError("No non-empty voice channels found to connect to")


def play_sound(bot, path: Path) -> asyncio.Task:
    """
    Start playing a sound in the background.

    Uses the bot's ready connection if it has one, otherwise joins the
    channel from find_voice_channel(). The target is resolved before
    returning so "nowhere to play" is reported to the caller; playback
    failures after that are only logged.

    Raises:
        NoVoiceChannelError: Not connected and no channel to join
    """
    connection = _ready_connection(bot)
    if connection is not None:
        coro = bot.voice.play_audio_file(connection, connection.guild_id, path)
    else:
        channel = find_voice_channel(bot)
        logger.debug(f"web play: joining #{channel.name}")
        coro = bot.voice.play_sound_in_channel(channel, path)

    task = asyncio.create_task(_run_playback(coro, path), name=f"web-play-{path.stem}")
    _playback_tasks.add(task)
    task.add_done_callback(_playback_tasks.discard)
    return task


async def _run_playback(coro, path: Path) -> None:
    try:
        await coro
    except Exception:
        logger.opt(exception=True).error(f"web play of {path.name} failed")


def disconnect_all(bot) -> int:
    """
    Leave every voice channel the bot is tracked in.

    Raises:
        NotConnectedError: Nothing to disconnect
    """
    guild_ids = bot.voice.guild_ids()
    if not guild_ids:
        raise NotConnectedError("Not connected to any voice channel")
    for guild_id in guild_ids:
        bot.voice.disconnect(guild_id)
    return len(guild_ids)
