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
Voice session manager.

Owns the per-guild registries (connection, player, idle timer) and is the
only code that writes to them. Slash commands and the web API both go
through one instance, reachable as bot.voice.

Flow:
    connection = await voice.connect(channel)
    await voice.play_audio_file(connection, guild_id, path)
    ...idle timer runs...
    voice.disconnect(guild_id)
"""

import asyncio
from functools import partial
from pathlib import Path

from loguru import logger

from core.idle import IdleTimer
from core.transport import (
    AudioPlayer,
    ConnectionStatus,
    NoSubscriberBehavior,
    PlayerStatus,
    VoiceConnection,
    VoiceConnectionDestroyed,
)
from utils.context_managers import playback_outcome


# Bounds (seconds)
CONNECT_TIMEOUT = 30.0     # fresh join -> READY
READY_TIMEOUT = 10.0       # existing CONNECTING connection -> READY
RECOVERY_TIMEOUT = 5.0     # DISCONNECTED -> SIGNALLING/CONNECTING
PLAYBACK_TIMEOUT = 600.0   # one play, start to IDLE


class VoiceError(Exception):
    """Base class for voice session failures."""


class ConnectTimeoutError(VoiceError):
    """A connection did not become ready in time."""


class PlaybackTimeoutError(VoiceError):
    """A playback never finished or failed within the bound."""


class VoiceSessionManager:
    """Connect-or-reuse, play-and-await, and disconnect for every guild."""

    def __init__(
        self,
        transport,
        idle_timeout: float | None = None,
        *,
        connect_timeout: float = CONNECT_TIMEOUT,
        ready_timeout: float = READY_TIMEOUT,
        recovery_timeout: float = RECOVERY_TIMEOUT,
        playback_timeout: float = PLAYBACK_TIMEOUT,
    ) -> None:
        self.transport = transport
        self.connect_timeout = connect_timeout
        self.ready_timeout = ready_timeout
        self.recovery_timeout = recovery_timeout
        self.playback_timeout = playback_timeout

        self._connections: dict[int, VoiceConnection] = {}
        self._players: dict[int, AudioPlayer] = {}
        self.idle_timer = IdleTimer(idle_timeout, self.disconnect)

        self._connect_locks: dict[int, asyncio.Lock] = {}
        self._recovery_tasks: set[asyncio.Task] = set()

    def _get_connect_lock(self, guild_id: int) -> asyncio.Lock:
        """Get or create the connect lock for a guild."""
        if guild_id not in self._connect_locks:
            self._connect_locks[guild_id] = asyncio.Lock()
        return self._connect_locks[guild_id]

    # =========================================================================
    # QUERIES
    # =========================================================================

    def get_connection(self, guild_id: int) -> VoiceConnection | None:
        return self._connections.get(guild_id)

    def get_player(self, guild_id: int) -> AudioPlayer | None:
        return self._players.get(guild_id)

    def guild_ids(self) -> list[int]:
        return list(self._connections)

    # =========================================================================
    # CONNECT
    # =========================================================================

    async def connect(self, channel) -> VoiceConnection:
        """
        Return a ready connection to channel, reusing the guild's existing one.

        A tracked connection that is READY or CONNECTING is reused (and moved
        if it sits in another channel). Anything else is thrown away and a
        fresh join is made.

        Raises:
            ConnectTimeoutError: Connection did not reach READY in time
        """
        guild_id = channel.guild.id
        self.idle_timer.cancel(guild_id)

        async with self._get_connect_lock(guild_id):
            existing = self._connections.get(guild_id)
            if existing is not None:
                if existing.status in (ConnectionStatus.READY, ConnectionStatus.CONNECTING):
                    return await self._reuse(existing, channel)
                logger.debug(f"guild {guild_id}: discarding {existing.status.value} connection")
                self._abandon(guild_id, existing)

            return await self._create_connection(channel)

    async def _reuse(self, connection: VoiceConnection, channel) -> VoiceConnection:
        guild_id = connection.guild_id
        if connection.channel_id != channel.id:
            logger.info(f"guild {guild_id}: moving to channel {channel.id}")
            connection.rejoin(channel)

        if connection.status is ConnectionStatus.CONNECTING:
            try:
                await connection.wait_for(ConnectionStatus.READY, self.ready_timeout)
            except (asyncio.TimeoutError, VoiceConnectionDestroyed) as e:
                raise ConnectTimeoutError(
                    f"voice connection for guild {guild_id} did not become ready"
                ) from e

        self._schedule_idle_if_quiet(guild_id)
        return connection

    async def _create_connection(self, channel) -> VoiceConnection:
        guild_id = channel.guild.id
        connection = self.transport.join(channel, self_deaf=True, self_mute=False)

        ready = False
        try:
            await connection.wait_for(ConnectionStatus.READY, self.connect_timeout)
            ready = True
        except asyncio.TimeoutError as e:
            raise ConnectTimeoutError(
                f"timed out connecting to voice in guild {guild_id}"
            ) from e
        finally:
            if not ready:
                self._abandon(guild_id, connection)

        self._connections[guild_id] = connection
        connection.add_listener(partial(self._on_connection_status, connection))
        logger.info(f"guild {guild_id}: connected to channel {channel.id}")

        self._schedule_idle_if_quiet(guild_id)
        return connection

    def _abandon(self, guild_id: int, connection: VoiceConnection) -> None:
        """Destroy a connection and forget it if it is the tracked one."""
        connection.destroy()
        if self._connections.get(guild_id) is connection:
            del self._connections[guild_id]
            if player := self._players.pop(guild_id, None):
                player.stop()

    # =========================================================================
    # DISCONNECT RECOVERY
    # =========================================================================

    def _on_connection_status(self, connection: VoiceConnection,
                              old: ConnectionStatus, new: ConnectionStatus) -> None:
        if new is not ConnectionStatus.DISCONNECTED:
            return
        if self._connections.get(connection.guild_id) is not connection:
            return

        # Watch from this tick on so a fast reconnect is not missed
        left = asyncio.get_running_loop().create_future()

        def watch(old: ConnectionStatus, new: ConnectionStatus) -> None:
            if not left.done():
                left.set_result(new)

        connection.add_listener(watch)
        task = asyncio.create_task(
            self._recover(connection, left, watch), name=f"voice-recover-{connection.guild_id}"
        )
        self._recovery_tasks.add(task)
        task.add_done_callback(self._recovery_tasks.discard)

    async def _recover(self, connection: VoiceConnection, left: asyncio.Future, watch) -> None:
        """Give a dropped connection a short window to start reconnecting."""
        guild_id = connection.guild_id
        try:
            new = await asyncio.wait_for(left, self.recovery_timeout)
        except asyncio.TimeoutError:
            new = connection.status
        finally:
            connection.remove_listener(watch)

        if new in (ConnectionStatus.SIGNALLING, ConnectionStatus.CONNECTING, ConnectionStatus.READY):
            logger.debug(f"guild {guild_id}: voice connection recovering")
            return

        logger.info(f"guild {guild_id}: voice connection lost, cleaning up")
        connection.destroy()
        if self._connections.get(guild_id) is connection:
            self.disconnect(guild_id)

    # =========================================================================
    # PLAYBACK
    # =========================================================================

    async def play_audio_file(self, connection: VoiceConnection, guild_id: int, path: str | Path) -> None:
        """
        Play a file through connection and wait for it to finish.

        Raises:
            PlaybackTimeoutError: Playback did not settle within the bound
            Exception: Whatever error the player reported, unchanged
        """
        player = self._players.get(guild_id)
        if player is None:
            player = self.transport.create_player(NoSubscriberBehavior.PAUSE)
            self._players[guild_id] = player

        self.idle_timer.cancel(guild_id)

        try:
            resource = self.transport.create_resource(path)
            connection.subscribe(player)

            with playback_outcome(player) as outcome:
                player.play(resource)
                logger.debug(f"guild {guild_id}: playing {Path(path).name}")
                try:
                    await asyncio.wait_for(outcome, self.playback_timeout)
                except asyncio.TimeoutError as e:
                    if player.resource is resource:
                        player.stop()
                    raise PlaybackTimeoutError(
                        f"playback of {Path(path).name} did not finish within {self.playback_timeout}s"
                    ) from e
        finally:
            self._schedule_idle_if_quiet(guild_id)

    async def play_sound_in_channel(self, channel, path: str | Path) -> None:
        """Connect (or reuse) and play in one call."""
        connection = await self.connect(channel)
        await self.play_audio_file(connection, channel.guild.id, path)

    def _schedule_idle_if_quiet(self, guild_id: int) -> None:
        if guild_id not in self._connections:
            return
        player = self._players.get(guild_id)
        if player is None or player.status is PlayerStatus.IDLE:
            self.idle_timer.schedule(guild_id)

    # =========================================================================
    # TEARDOWN
    # =========================================================================

    def disconnect(self, guild_id: int) -> None:
        """Tear down everything tracked for a guild. No-op if nothing is."""
        self.idle_timer.cancel(guild_id)

        player = self._players.pop(guild_id, None)
        connection = self._connections.pop(guild_id, None)

        if player is not None:
            player.stop()
        if connection is not None:
            connection.destroy()
            logger.info(f"guild {guild_id}: disconnected")

    async def close(self) -> None:
        """Disconnect every guild and wait for the transport to settle."""
        self.idle_timer.cancel_all()
        for guild_id in self.guild_ids():
            self.disconnect(guild_id)

        for task in list(self._recovery_tasks):
            task.cancel()
        await asyncio.gather(*self._recovery_tasks, return_exceptions=True)

        await self.transport.aclose()
