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

"""Per-guild idle disconnect countdowns."""

import asyncio
from typing import Awaitable, Callable

from loguru import logger


ExpireCallback = Callable[[int], "Awaitable[None] | None"]


class IdleTimer:
    """
    One pending countdown task per guild.

    schedule() always cancels the guild's previous countdown before starting a
    new one, so at most one expiry can fire per quiet period. A timeout of
    None or 0 disables the feature: schedule() does nothing.
    """

    def __init__(self, timeout: float | None, on_expire: ExpireCallback) -> None:
        self.timeout = timeout
        self.on_expire = on_expire
        self._tasks: dict[int, asyncio.Task] = {}

    @property
    def enabled(self) -> bool:
        return bool(self.timeout) and self.timeout > 0

    def is_scheduled(self, guild_id: int) -> bool:
        task = self._tasks.get(guild_id)
        return task is not None and not task.done()

    def schedule(self, guild_id: int) -> None:
        """Start countdown - cancel existing first."""
        if not self.enabled:
            return
        self.cancel(guild_id)
        self._tasks[guild_id] = asyncio.create_task(
            self._countdown(guild_id), name=f"idle-{guild_id}"
        )
        logger.debug(f"guild {guild_id}: starting {self.timeout}s idle timer")

    def cancel(self, guild_id: int) -> bool:
        """Cancel if exists and not done. Returns True if a countdown was cancelled."""
        if task := self._tasks.pop(guild_id, None):
            if not task.done() and task is not asyncio.current_task():
                task.cancel()
                logger.debug(f"guild {guild_id}: idle timer cancelled")
                return True
        return False

    def cancel_all(self) -> None:
        for guild_id in list(self._tasks):
            self.cancel(guild_id)

    async def _countdown(self, guild_id: int) -> None:
        """Background task that fires on_expire after the timeout."""
        try:
            await asyncio.sleep(self.timeout)
        except asyncio.CancelledError:
            return  # Expected when activity resumes

        # Release our slot before teardown so on_expire can't cancel us mid-flight
        if self._tasks.get(guild_id) is asyncio.current_task():
            del self._tasks[guild_id]

        logger.info(f"guild {guild_id}: idle for {self.timeout}s, disconnecting")
        result = self.on_expire(guild_id)
        if asyncio.iscoroutine(result):
            await result
