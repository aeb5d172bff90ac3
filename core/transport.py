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

"""Voice transport: observable connection and player state machines.

The session manager never touches discord.py directly. It talks to a
transport that hands out three kinds of objects:

- VoiceConnection: one per guild, walks SIGNALLING -> CONNECTING -> READY
  and may drop to DISCONNECTED or end in DESTROYED.
- AudioPlayer: one per guild, walks IDLE -> BUFFERING -> PLAYING -> IDLE
  and reports errors through error listeners.
- AudioResource: a single-use source built from a local file.

Both state machines expose add_listener(callback(old, new)) and an awaitable
wait_for(status, timeout). DiscordVoiceTransport implements them on top of
discord.VoiceClient; tests plug in a fake connection and reuse AudioPlayer.
"""

import asyncio
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Callable

import discord
from loguru import logger


# Quiet FFmpeg, never read stdin
FFMPEG_BEFORE_OPTIONS = '-hide_banner -loglevel error -nostdin'

# How long the bot waits for discord.py to finish the voice handshake
VOICE_HANDSHAKE_TIMEOUT = 30.0

# Polling used while a dropped connection comes back
VOICE_CONNECTION_MAX_WAIT = 5.0
VOICE_CONNECTION_CHECK_INTERVAL = 0.05

# Track fire-and-forget teardown tasks to prevent GC warnings
_background_tasks: set[asyncio.Task] = set()


def _spawn(coro, name: str) -> asyncio.Task:
    """Run a coroutine in the background, keeping a reference until it finishes."""
    task = asyncio.create_task(coro, name=name)
    _background_tasks.add(task)
    task.add_done_callback(_background_tasks.discard)
    task.add_done_callback(_log_task_failure)
    return task


def _log_task_failure(task: asyncio.Task) -> None:
    if task.cancelled():
        return
    if exc := task.exception():
        logger.opt(exception=exc).warning(f"background task {task.get_name()} failed")


async def drain_background_tasks(timeout: float = 5.0) -> None:
    """Wait for pending teardown tasks (used on shutdown)."""
    pending = [t for t in _background_tasks if not t.done()]
    if pending:
        await asyncio.wait(pending, timeout=timeout)


class ConnectionStatus(Enum):
    """Lifecycle of a guild voice connection."""
    SIGNALLING = "signalling"
    CONNECTING = "connecting"
    READY = "ready"
    DISCONNECTED = "disconnected"
    DESTROYED = "destroyed"


class PlayerStatus(Enum):
    """Lifecycle of a guild audio player."""
    IDLE = "idle"
    BUFFERING = "buffering"
    PLAYING = "playing"
    AUTO_PAUSED = "autopaused"
    PAUSED = "paused"


class NoSubscriberBehavior(Enum):
    """What a player does when it has no ready connection to send audio to."""
    PAUSE = "pause"
    STOP = "stop"


class VoiceConnectionDestroyed(Exception):
    """Raised to waiters when a connection is destroyed under them."""


StatusListener = Callable[[Any, Any], None]


class StatusMachine:
    """Observable status with awaitable transitions.

    Listeners are called synchronously with (old, new) on every change.
    wait_for() resolves when the status is entered, or raises
    asyncio.TimeoutError when the bound elapses first.
    """

    def __init__(self, initial: Enum) -> None:
        self._status = initial
        self._listeners: list[StatusListener] = []
        self._waiters: list[tuple[Enum, asyncio.Future]] = []

    @property
    def status(self):
        return self._status

    def add_listener(self, callback: StatusListener) -> None:
        self._listeners.append(callback)

    def remove_listener(self, callback: StatusListener) -> None:
        try:
            self._listeners.remove(callback)
        except ValueError:
            pass  # Already removed

    def _set_status(self, new: Enum) -> None:
        old = self._status
        if old is new:
            return
        self._status = new

        for status, fut in self._waiters:
            if status is new and not fut.done():
                fut.set_result(new)

        for callback in list(self._listeners):
            callback(old, new)

    def _fail_waiters(self, exc: BaseException) -> None:
        """Reject every pending wait_for() with exc."""
        for _, fut in self._waiters:
            if not fut.done():
                fut.set_exception(exc)

    async def wait_for(self, status: Enum, timeout: float):
        """Wait until status is entered. Returns self."""
        if self._status is status:
            return self

        fut = asyncio.get_running_loop().create_future()
        entry = (status, fut)
        self._waiters.append(entry)
        try:
            await asyncio.wait_for(fut, timeout)
        finally:
            self._waiters.remove(entry)
        return self


# =============================================================================
# CONNECTIONS
# =============================================================================

class VoiceConnection(StatusMachine):
    """A guild's voice connection.

    Subclasses supply the actual audio path (play_source and friends) and the
    channel switching (rejoin). Everything else is shared.
    """

    def __init__(self, guild_id: int, channel_id: int) -> None:
        super().__init__(ConnectionStatus.SIGNALLING)
        self.guild_id = guild_id
        self.channel_id = channel_id
        self.player: "AudioPlayer | None" = None

    def __repr__(self) -> str:
        return f"<{type(self).__name__} guild={self.guild_id} channel={self.channel_id} status={self.status.value}>"

    @property
    def destroyed(self) -> bool:
        return self.status is ConnectionStatus.DESTROYED

    def subscribe(self, player: "AudioPlayer") -> None:
        """Route a player's audio through this connection."""
        if self.player is player:
            return
        if self.player is not None:
            self.player._detach(self)
        self.player = player
        player._attach(self)

    def rejoin(self, channel) -> bool:
        """Move the connection to another channel. Returns False if destroyed."""
        raise NotImplementedError

    async def wait_for(self, status: ConnectionStatus, timeout: float):
        if self.destroyed and status is not ConnectionStatus.DESTROYED:
            raise VoiceConnectionDestroyed(f"voice connection for guild {self.guild_id} destroyed")
        return await super().wait_for(status, timeout)

    def destroy(self) -> None:
        """Tear down the connection. Safe to call more than once."""
        if self.destroyed:
            return
        self._set_status(ConnectionStatus.DESTROYED)
        self._fail_waiters(VoiceConnectionDestroyed(f"voice connection for guild {self.guild_id} destroyed"))
        if self.player is not None:
            self.player._detach(self)
            self.player = None
        self._teardown()

    def _teardown(self) -> None:
        """Release transport resources (called once by destroy)."""

    # Audio path used by AudioPlayer

    def play_source(self, source: discord.AudioSource, after: Callable[[Exception | None], None]) -> None:
        raise NotImplementedError

    def stop_source(self) -> None:
        raise NotImplementedError


async def safe_disconnect(voice_client: discord.VoiceClient | None, force: bool = True) -> bool:
    """
    Disconnect a voice client, swallowing transport errors.

    Returns:
        bool: True if disconnected (or None was passed), False on error
    """
    if not voice_client:
        return True
    try:
        await voice_client.disconnect(force=force)
        return True
    except (discord.ClientException, discord.HTTPException) as e:
        logger.debug(f"disconnect failed (non-critical): {e}")
        return False
    except OSError as e:
        # Transport already gone during shutdown
        logger.debug(f"disconnect failed with transport error (non-critical): {e}")
        return False


class DiscordVoiceConnection(VoiceConnection):
    """VoiceConnection backed by a discord.VoiceClient.

    The handshake runs in a background task started on construction. Voice
    state updates for the bot member are fed in through on_voice_state() so
    drops and moves show up as status transitions.
    """

    def __init__(self, channel: discord.VoiceChannel, *, self_deaf: bool = True,
                 self_mute: bool = False, timeout: float = VOICE_HANDSHAKE_TIMEOUT) -> None:
        super().__init__(channel.guild.id, channel.id)
        self.channel = channel
        self.self_deaf = self_deaf
        self.self_mute = self_mute
        self.voice_client: discord.VoiceClient | None = None
        self._timeout = timeout
        self._connect_task = _spawn(self._connect(), f"voice-connect-{self.guild_id}")

    async def _connect(self) -> None:
        self._set_status(ConnectionStatus.CONNECTING)

        # A previous session may still be closing
        stale = self.channel.guild.voice_client
        if stale is not None:
            await safe_disconnect(stale)

        try:
            vc = await self.channel.connect(
                timeout=self._timeout,
                reconnect=True,
                self_deaf=self.self_deaf,
                self_mute=self.self_mute,
            )
        except (discord.ClientException, discord.HTTPException, asyncio.TimeoutError, OSError) as e:
            logger.warning(f"voice connection to #{self.channel.name} failed: {e}")
            if not self.destroyed:
                self._set_status(ConnectionStatus.DISCONNECTED)
                self._fail_waiters(e)
            return

        if self.destroyed:
            # destroy() ran while the handshake was in flight
            await safe_disconnect(vc)
            return

        self.voice_client = vc
        self._set_status(ConnectionStatus.READY)

        # rejoin() before the handshake finished
        if vc.channel and vc.channel.id != self.channel_id:
            await self._move(self.channel)

    def rejoin(self, channel: discord.VoiceChannel) -> bool:
        if self.destroyed:
            return False
        self.channel = channel
        self.channel_id = channel.id
        if self.voice_client is not None:
            _spawn(self._move(channel), f"voice-move-{self.guild_id}")
        return True

    async def _move(self, channel: discord.VoiceChannel) -> None:
        try:
            await self.voice_client.move_to(channel)
            logger.debug(f"moved to #{channel.name}")
        except (discord.ClientException, discord.HTTPException, asyncio.TimeoutError) as e:
            logger.warning(f"failed to move to #{channel.name}: {e}")

    def on_voice_state(self, channel: discord.VoiceChannel | None) -> None:
        """Apply a voice state update for the bot member in this guild."""
        if self.destroyed or self.voice_client is None:
            return

        if channel is None:
            if self.status is ConnectionStatus.READY:
                logger.debug(f"guild {self.guild_id}: voice connection dropped")
                self._set_status(ConnectionStatus.DISCONNECTED)
            return

        self.channel = channel
        self.channel_id = channel.id
        if self.status is ConnectionStatus.DISCONNECTED:
            self._set_status(ConnectionStatus.SIGNALLING)
            _spawn(self._await_reconnect(), f"voice-reconnect-{self.guild_id}")

    async def _await_reconnect(self) -> None:
        """Poll discord.py's own reconnect until the client is usable again."""
        self._set_status(ConnectionStatus.CONNECTING)
        loop = asyncio.get_running_loop()
        deadline = loop.time() + VOICE_CONNECTION_MAX_WAIT
        while loop.time() < deadline:
            if self.destroyed:
                return
            if self.voice_client.is_connected():
                self._set_status(ConnectionStatus.READY)
                return
            await asyncio.sleep(VOICE_CONNECTION_CHECK_INTERVAL)
        if not self.destroyed:
            self._set_status(ConnectionStatus.DISCONNECTED)

    def _teardown(self) -> None:
        if not self._connect_task.done():
            self._connect_task.cancel()
        if self.voice_client is not None:
            _spawn(safe_disconnect(self.voice_client), f"voice-disconnect-{self.guild_id}")
            self.voice_client = None

    def play_source(self, source, after) -> None:
        if self.voice_client is None:
            raise discord.ClientException("not connected to voice")
        self.voice_client.play(source, after=after)

    def stop_source(self) -> None:
        if self.voice_client is not None:
            self.voice_client.stop()


# =============================================================================
# PLAYERS AND RESOURCES
# =============================================================================

@dataclass
class AudioResource:
    """A single-use playable source. Sources cannot be replayed once consumed."""
    path: Path
    source: Any


ErrorListener = Callable[[Exception], None]


class AudioPlayer(StatusMachine):
    """Plays one resource at a time through its subscribed connection.

    Completion is reported by discord.py on its audio thread; the callback is
    marshalled back onto the event loop before any state changes. Each play()
    bumps a session counter so callbacks from a replaced or stopped resource
    are ignored.
    """

    def __init__(self, no_subscriber: NoSubscriberBehavior = NoSubscriberBehavior.PAUSE) -> None:
        super().__init__(PlayerStatus.IDLE)
        self.no_subscriber = no_subscriber
        self.connection: VoiceConnection | None = None
        self.resource: AudioResource | None = None
        self._error_listeners: list[ErrorListener] = []
        self._session = 0
        self._started = False

    def add_error_listener(self, callback: ErrorListener) -> None:
        self._error_listeners.append(callback)

    def remove_error_listener(self, callback: ErrorListener) -> None:
        try:
            self._error_listeners.remove(callback)
        except ValueError:
            pass

    def _connection_ready(self) -> bool:
        return self.connection is not None and self.connection.status is ConnectionStatus.READY

    def play(self, resource: AudioResource) -> None:
        """Start playing resource, replacing whatever was playing."""
        if self.resource is not None and self._started and self.connection is not None:
            self._session += 1
            self.connection.stop_source()
        self._session += 1
        self.resource = resource
        self._started = False
        self._set_status(PlayerStatus.BUFFERING)
        self._start()

    def _start(self) -> None:
        if not self._connection_ready():
            if self.no_subscriber is NoSubscriberBehavior.STOP:
                self.stop()
            else:
                self._set_status(PlayerStatus.AUTO_PAUSED)
            return

        session = self._session
        loop = asyncio.get_running_loop()

        def after(error: Exception | None) -> None:
            # Runs on discord.py's audio thread
            loop.call_soon_threadsafe(self._finished, session, error)

        try:
            self.connection.play_source(self.resource.source, after)
        except discord.ClientException as e:
            self._finished(session, e)
            return
        self._started = True
        self._set_status(PlayerStatus.PLAYING)

    def _finished(self, session: int, error: Exception | None) -> None:
        if session != self._session:
            return  # Stale callback from a replaced resource
        self.resource = None
        self._started = False
        if error is not None:
            logger.debug(f"player error: {error}")
            for callback in list(self._error_listeners):
                callback(error)
        self._set_status(PlayerStatus.IDLE)

    def stop(self) -> None:
        """Stop playback and drop the current resource."""
        self._session += 1
        if self._started and self.connection is not None and not self.connection.destroyed:
            self.connection.stop_source()
        self.resource = None
        self._started = False
        self._set_status(PlayerStatus.IDLE)

    def _attach(self, connection: VoiceConnection) -> None:
        previous = self.connection
        if previous is not None and previous is not connection:
            previous.remove_listener(self._on_connection_status)
            if previous.player is self:
                previous.player = None
        self.connection = connection
        connection.add_listener(self._on_connection_status)
        if self.status is PlayerStatus.AUTO_PAUSED and self._connection_ready():
            self._resume_after_autopause()

    def _detach(self, connection: VoiceConnection) -> None:
        connection.remove_listener(self._on_connection_status)
        if self.connection is connection:
            self.connection = None
            if self.status in (PlayerStatus.BUFFERING, PlayerStatus.PLAYING):
                self._set_status(PlayerStatus.AUTO_PAUSED)

    def _on_connection_status(self, old: ConnectionStatus, new: ConnectionStatus) -> None:
        if new is ConnectionStatus.READY:
            if self.status is PlayerStatus.AUTO_PAUSED:
                self._resume_after_autopause()
        elif self.status is PlayerStatus.PLAYING:
            self._set_status(PlayerStatus.AUTO_PAUSED)

    def _resume_after_autopause(self) -> None:
        if self.resource is None:
            self._set_status(PlayerStatus.IDLE)
        elif self._started:
            # discord.py keeps the stream alive across reconnects
            self._set_status(PlayerStatus.PLAYING)
        else:
            self._start()


def make_audio_source(path: str | Path) -> discord.AudioSource:
    """
    Create a fresh audio source for a file.

    Opus files are passed through untouched; everything else is decoded by
    FFmpeg into the 48kHz stereo PCM discord.py expects.
    """
    file_path = Path(path)
    if file_path.suffix.lower() == '.opus':
        logger.debug(f"creating opus passthrough source for {file_path.name}")
        return discord.FFmpegOpusAudio(str(file_path), codec='copy', before_options=FFMPEG_BEFORE_OPTIONS)

    logger.debug(f"creating transcoded source for {file_path.name}")
    return discord.FFmpegPCMAudio(str(file_path), before_options=FFMPEG_BEFORE_OPTIONS, options='-vn')


class DiscordVoiceTransport:
    """Creates connections, players and resources on top of discord.py."""

    def join(self, channel: discord.VoiceChannel, *, self_deaf: bool = True,
             self_mute: bool = False) -> DiscordVoiceConnection:
        logger.debug(f"joining #{channel.name}")
        return DiscordVoiceConnection(channel, self_deaf=self_deaf, self_mute=self_mute)

    def create_player(self, no_subscriber: NoSubscriberBehavior = NoSubscriberBehavior.PAUSE) -> AudioPlayer:
        return AudioPlayer(no_subscriber)

    def create_resource(self, path: str | Path) -> AudioResource:
        return AudioResource(Path(path), make_audio_source(path))

    async def aclose(self) -> None:
        await drain_background_tasks()
