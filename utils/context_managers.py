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
Context Managers for Safe Listener Management

Provides context managers that guarantee listener cleanup even when errors
or timeouts occur.
"""

import asyncio
from contextlib import contextmanager
from typing import Iterator

from core.transport import AudioPlayer, PlayerStatus


@contextmanager
def playback_outcome(player: AudioPlayer) -> Iterator[asyncio.Future]:
    """
    Subscribe to a player's completion for the duration of one play.

    Usage:
        with playback_outcome(player) as outcome:
            player.play(resource)
            await asyncio.wait_for(outcome, timeout)

    The yielded future resolves exactly once: with None when the player goes
    back to IDLE, or with the player's error. Both listeners are removed on
    every exit path, including timeouts and cancellation.

    Args:
        player: AudioPlayer to observe
    """
    outcome = asyncio.get_running_loop().create_future()

    def on_status(old: PlayerStatus, new: PlayerStatus) -> None:
        if new is PlayerStatus.IDLE and not outcome.done():
            outcome.set_result(None)

    def on_error(error: Exception) -> None:
        if not outcome.done():
            outcome.set_exception(error)

    player.add_listener(on_status)
    player.add_error_listener(on_error)
    try:
        yield outcome
    finally:
        player.remove_listener(on_status)
        player.remove_error_listener(on_error)
        if not outcome.done():
            outcome.cancel()
