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

"""Response utilities for Discord interactions.

Provides ResponseMixin for consistent message handling across cogs.
"""

import asyncio

import discord

# Track fire-and-forget cleanup tasks to prevent GC warnings
_cleanup_tasks: set[asyncio.Task] = set()


def escape_markdown(text: str) -> str:
    """Escape underscores for Discord embed/message display.

    Sound names are snake_case, which Discord would render as italics.

    Use for: embed descriptions, message content.
    Do NOT use for: autocomplete choices (plain text).
    """
    return text.replace("_", "\\_")


# Discord API hard limits
CHOICE_NAME_MAX = 97       # app_commands.Choice.name (limit 100) - room for "..."
EMBED_LINE_MAX = 120       # one /list line; 25 lines stay well under 4096


def truncate_for_display(text: str, max_length: int) -> str:
    """Truncate text with ellipsis for Discord display.

    Always call BEFORE escape_markdown(); escaping adds characters.
    """
    if len(text) <= max_length:
        return text
    return text[:max_length - 3] + "..."


class ResponseMixin:
    """Mixin providing standardized interaction responses for cogs.

    respond() sends a short ephemeral message (auto-deleted after
    ui.brief_auto_delete) and edit_reply() rewrites a deferred public reply.
    Both honour the per-message enabled flag from messages.yaml.

    Requirements:
        self.bot must have a config_manager with msg(), is_enabled(), get()
    """

    def msg(self, key: str, **kwargs) -> str:
        """Get formatted message text from config."""
        return self.bot.config_manager.msg(key, **kwargs)

    async def _delete_response(self, interaction: discord.Interaction, delay: float) -> None:
        """Delete interaction response after delay (for followup path)."""
        try:
            await asyncio.sleep(delay)
            await interaction.delete_original_response()
        except asyncio.CancelledError:
            pass  # Shutdown during wait - acceptable
        except discord.HTTPException:
            pass  # Already gone

    async def respond(self, interaction: discord.Interaction, key: str, **kwargs) -> None:
        """Send ephemeral message if enabled, otherwise acknowledge silently.

        Args:
            interaction: Discord interaction to respond to
            key: Message key from messages.yaml
            **kwargs: Format variables for the message template
        """
        if not self.bot.config_manager.is_enabled(key):
            # Silent acknowledgment - defer then delete
            if not interaction.response.is_done():
                await interaction.response.defer(ephemeral=True)
            try:
                await interaction.delete_original_response()
            except discord.NotFound:
                pass  # Already deleted or never created
            return

        text = self.msg(key, **kwargs)

        timeout = self.bot.config_manager.get("ui.brief_auto_delete", 10)
        delete_after = timeout if timeout > 0 else None

        if not interaction.response.is_done():
            await interaction.response.send_message(text, ephemeral=True, delete_after=delete_after)
        else:
            await interaction.followup.send(text, ephemeral=True)
            if delete_after:
                task = asyncio.create_task(self._delete_response(interaction, delete_after))
                _cleanup_tasks.add(task)
                task.add_done_callback(_cleanup_tasks.discard)

    async def edit_reply(self, interaction: discord.Interaction, key: str, **kwargs) -> None:
        """Replace the text of a deferred reply. Disabled messages delete it."""
        try:
            if not self.bot.config_manager.is_enabled(key):
                await interaction.delete_original_response()
                return
            await interaction.edit_original_response(content=self.msg(key, **kwargs), embed=None)
        except discord.NotFound:
            pass  # Reply deleted by the user, or the interaction expired
