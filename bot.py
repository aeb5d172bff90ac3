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
Button Gremlin
========================================================

A Discord soundboard bot built on discord.py.

Slash commands (cogs/soundboard.py) and the optional HTTP API (web/) both
drive one VoiceSessionManager (core/session.py), reachable as bot.voice.
"""

import asyncio
import os
import sys
from pathlib import Path

import discord
from discord.ext import commands
from dotenv import load_dotenv
from loguru import logger

from core.session import VoiceSessionManager
from core.transport import DiscordVoiceTransport
from utils.config import ConfigError, ConfigManager, validate_configuration
from utils.library import SoundLibrary
from utils.logging import setup_logging
from web.server import WebServer


EXTENSIONS = ("cogs.soundboard",)

# Connect + Speak + Use Voice Activity + slash commands
INVITE_PERMISSIONS = 36703232


class SoundboardBot(commands.Bot):
    """Discord client plus the shared services commands and the web API use.

    Attributes:
        config_manager: Loaded settings and messages
        library: Sound library (scanned in setup_hook)
        voice: Voice session manager, the single owner of voice state
        web_server: Running HTTP API, or None when disabled
    """

    def __init__(self, config_manager: ConfigManager, library: SoundLibrary,
                 voice: VoiceSessionManager) -> None:
        intents = discord.Intents.default()
        intents.voice_states = True
        super().__init__(
            command_prefix=commands.when_mentioned,
            intents=intents,
            help_command=None,
        )
        self.config_manager = config_manager
        self.library = library
        self.voice = voice
        self.web_server: WebServer | None = None

    async def setup_hook(self) -> None:
        """Scan sounds, load commands, sync them, start the web API."""
        await self.library.scan()

        for extension in EXTENSIONS:
            await self.load_extension(extension)

        await self._sync_commands()

        if self.config_manager.get("web.enabled", False):
            self.web_server = WebServer(
                self,
                self.library,
                host=self.config_manager.get("web.host", "0.0.0.0"),
                port=self.config_manager.get("web.port", 3000),
                api_key=self.config_manager.get("web.api_key", ""),
                max_upload_mb=self.config_manager.get("max_upload_mb", 10),
                static_path=Path(self.config_manager.get("web.static_path", "./web/dist")),
            )
            await self.web_server.start()

    async def _sync_commands(self) -> None:
        """Sync to GUILD_ID when set (instant), otherwise globally (up to an hour)."""
        guild_id = os.getenv("GUILD_ID", "").strip()
        if guild_id.isdigit():
            guild = discord.Object(id=int(guild_id))
            self.tree.copy_global_to(guild=guild)
            synced = await self.tree.sync(guild=guild)
            logger.info(f"synced {len(synced)} commands to guild {guild_id}")
        else:
            if guild_id:
                logger.warning(f"GUILD_ID={guild_id!r} is not a guild id, syncing globally")
            synced = await self.tree.sync()
            logger.info(f"synced {len(synced)} commands globally")

    async def on_ready(self) -> None:
        logger.log("NOTICE", f"ready, logged in as {self.user}")
        logger.info(
            "invite url: https://discord.com/api/oauth2/authorize"
            f"?client_id={self.user.id}&permissions={INVITE_PERMISSIONS}"
            "&scope=bot%20applications.commands"
        )

    async def close(self) -> None:
        """Stop the web API and tear down voice before the gateway closes."""
        logger.info("shutting down")
        if self.web_server is not None:
            await self.web_server.stop()
            self.web_server = None
        await self.voice.close()
        await super().close()


async def run() -> None:
    """Load config, wire services together and run until closed."""
    _default_config = Path(__file__).parent / "config"
    config_manager = ConfigManager(Path(os.getenv("CONFIG_PATH") or str(_default_config)))
    try:
        await config_manager.load()
    except ConfigError as e:
        logger.error(f"invalid configuration: {e}")
        sys.exit(1)

    setup_logging(
        config_manager.get("logging.level"),
        config_manager.get("logging.destination"),
    )

    if config_manager.get("web.enabled", False) and not config_manager.get("web.api_key"):
        logger.error("web.api_key (WEB_API_KEY) is required when the web api is enabled")
        sys.exit(1)

    library = SoundLibrary(config_manager.sounds_path)
    voice = VoiceSessionManager(DiscordVoiceTransport(), config_manager.idle_timeout)
    bot = SoundboardBot(config_manager, library, voice)

    async with bot:
        await bot.start(os.environ["DISCORD_TOKEN"].strip())


def main() -> None:
    load_dotenv()
    setup_logging(os.getenv("LOG_LEVEL"), os.getenv("LOG_DESTINATION"))
    validate_configuration()
    try:
        asyncio.run(run())
    except KeyboardInterrupt:
        pass  # Shutdown already logged by close()


if __name__ == "__main__":
    main()
