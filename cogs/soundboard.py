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

"""Soundboard slash commands for Button Gremlin."""

import discord
from discord import app_commands
from discord.ext import commands
from loguru import logger

from core.transport import DiscordVoiceConnection
from utils.library import ALLOWED_EXTENSIONS, LibraryError, format_file_size, is_allowed_extension
from utils.response import (
    ResponseMixin,
    escape_markdown,
    truncate_for_display,
    CHOICE_NAME_MAX,
    EMBED_LINE_MAX,
)
from utils.search import autocomplete_search


LIST_EMBED_COLOR = 0x5865F2


class Soundboard(ResponseMixin, commands.Cog):
    """Play, list, upload and disconnect.

    Voice work goes through bot.voice (VoiceSessionManager); sounds come from
    bot.library (SoundLibrary).
    """

    def __init__(self, bot: commands.Bot) -> None:
        self.bot = bot

    @app_commands.command(name="ping", description="check the bot is alive")
    async def ping(self, interaction: discord.Interaction) -> None:
        await self.respond(interaction, "pong")

    async def sound_autocomplete(
        self,
        interaction: discord.Interaction,
        current: str
    ) -> list[app_commands.Choice[str]]:
        """Autocomplete callback for sound search.

        Must respond within 3 seconds, returns up to 25 choices.
        Shows the display name, value is the sound name.
        """
        sounds = autocomplete_search(current, self.bot.library.list_sounds())
        return [
            app_commands.Choice(
                name=truncate_for_display(sound.display_name, CHOICE_NAME_MAX),
                value=sound.name,
            )
            for sound in sounds
        ]

    @app_commands.command(name="play", description="play a sound in your voice channel")
    @app_commands.guild_only()
    @app_commands.describe(sound="type to search (/list shows everything)")
    @app_commands.autocomplete(sound=sound_autocomplete)
    async def play(self, interaction: discord.Interaction, sound: str) -> None:
        """Join the caller's voice channel (or reuse our connection) and play a sound.

        The reply is deferred while connecting, then edited to "playing" and
        kept until playback finishes or fails.
        """
        member = interaction.user
        if interaction.guild is None or not isinstance(member, discord.Member):
            await self.respond(interaction, "guild_only")
            return

        if not member.voice or not member.voice.channel:
            await self.respond(interaction, "not_in_vc")
            return

        sound_file = self.bot.library.get(sound)
        if sound_file is None:
            await self.respond(interaction, "sound_not_found", name=sound)
            return

        await interaction.response.defer()

        guild_id = interaction.guild.id
        try:
            connection = await self.bot.voice.connect(member.voice.channel)
            await self.edit_reply(interaction, "playing", name=escape_markdown(sound_file.display_name))
            await self.bot.voice.play_audio_file(connection, guild_id, sound_file.path)
        except Exception:
            # Command boundary: report every failure to the user
            logger.opt(exception=True).error(f"failed to play {sound_file.name} in guild {guild_id}")
            await self.edit_reply(interaction, "play_failed")
            return

        logger.info(f"{member.display_name} played {sound_file.name}")

    @app_commands.command(name="list", description="list available sounds")
    @app_commands.describe(page="page number")
    async def list_sounds(self, interaction: discord.Interaction, page: app_commands.Range[int, 1] = 1) -> None:
        """Show one page of sounds with their sizes."""
        sounds = self.bot.library.list_sounds()
        if not sounds:
            await self.respond(interaction, "library_empty")
            return

        page_size = self.bot.config_manager.get("list_page_size", 10)
        total_pages = (len(sounds) + page_size - 1) // page_size
        if page < 1 or page > total_pages:
            await self.respond(interaction, "invalid_page", pages=total_pages)
            return

        start = (page - 1) * page_size
        lines = []
        for number, sound in enumerate(sounds[start:start + page_size], start=start + 1):
            name = escape_markdown(truncate_for_display(sound.display_name, EMBED_LINE_MAX))
            lines.append(f"**{number}.** {name} *({format_file_size(sound.size)})*")

        embed = discord.Embed(
            title=self.msg("list_title"),
            description="\n".join(lines),
            color=LIST_EMBED_COLOR,
        )
        embed.set_footer(text=self.msg(
            "list_footer",
            page=page,
            pages=total_pages,
            total=len(sounds),
            plural="" if len(sounds) == 1 else "s",
        ))
        await interaction.response.send_message(embed=embed)

    @app_commands.command(name="upload", description="upload a new sound")
    @app_commands.describe(file="the audio file to upload")
    async def upload(self, interaction: discord.Interaction, file: discord.Attachment) -> None:
        """Validate an attachment, then store it in the library."""
        max_mb = self.bot.config_manager.get("max_upload_mb", 10)
        if file.size > max_mb * 1024 * 1024:
            await self.respond(interaction, "file_too_large", max_mb=max_mb)
            return

        if not is_allowed_extension(file.filename):
            await self.respond(interaction, "invalid_file_type", allowed=", ".join(ALLOWED_EXTENSIONS))
            return

        await interaction.response.defer()

        try:
            data = await file.read()
            sound = await self.bot.library.save(file.filename, data)
        except (discord.HTTPException, LibraryError) as e:
            logger.warning(f"upload of {file.filename} failed: {e}")
            await self.edit_reply(interaction, "upload_failed")
            return

        logger.info(f"{interaction.user.display_name} uploaded {sound.name}")
        await self.edit_reply(interaction, "uploaded", name=sound.name)

    @app_commands.command(name="disconnect", description="leave the voice channel")
    @app_commands.guild_only()
    async def disconnect(self, interaction: discord.Interaction) -> None:
        guild_id = interaction.guild_id
        if guild_id is None:
            await self.respond(interaction, "guild_only")
            return

        was_connected = self.bot.voice.get_connection(guild_id) is not None
        self.bot.voice.disconnect(guild_id)

        if was_connected:
            logger.info(f"disconnected by {interaction.user.display_name}")
            await self.respond(interaction, "disconnected")
        else:
            await self.respond(interaction, "not_connected")

    @commands.Cog.listener()
    async def on_voice_state_update(
        self,
        member: discord.Member,
        before: discord.VoiceState,
        after: discord.VoiceState
    ) -> None:
        """Feed the bot's own voice moves and drops into its connection."""
        if self.bot.user is None or member.id != self.bot.user.id:
            return

        connection = self.bot.voice.get_connection(member.guild.id)
        if isinstance(connection, DiscordVoiceConnection):
            connection.on_voice_state(after.channel)


async def setup(bot: commands.Bot) -> None:
    """Load the Soundboard cog."""
    await bot.add_cog(Soundboard(bot))
