"""
Tests for the voice transport state machines.

These tests verify that:
1. StatusMachine listeners and waiters see every transition
2. AudioPlayer walks IDLE -> BUFFERING -> PLAYING -> IDLE and ignores stale callbacks
3. AudioPlayer auto-pauses without a ready connection and resumes on READY
4. DiscordVoiceConnection maps discord.py events onto connection statuses
5. make_audio_source picks passthrough for opus and transcoding otherwise
"""

import asyncio
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

import discord
import pytest

from conftest import FakeConnection, settle
from core.transport import (
    AudioPlayer,
    AudioResource,
    ConnectionStatus,
    DiscordVoiceConnection,
    DiscordVoiceTransport,
    FFMPEG_BEFORE_OPTIONS,
    NoSubscriberBehavior,
    PlayerStatus,
    StatusMachine,
    VoiceConnectionDestroyed,
    drain_background_tasks,
    make_audio_source,
    safe_disconnect,
)


def ready_connection(guild_id=1, channel_id=100) -> FakeConnection:
    connection = FakeConnection(guild_id, channel_id)
    connection.make_ready()
    return connection


def resource(name="clip.mp3") -> AudioResource:
    return AudioResource(path=name, source=f"source:{name}")


class TestStatusMachine:
    """Tests for listeners and wait_for()."""

    @pytest.mark.asyncio
    async def test_listeners_receive_old_and_new(self):
        machine = StatusMachine(PlayerStatus.IDLE)
        seen = []
        machine.add_listener(lambda old, new: seen.append((old, new)))

        machine._set_status(PlayerStatus.BUFFERING)
        machine._set_status(PlayerStatus.BUFFERING)
        machine._set_status(PlayerStatus.PLAYING)

        assert seen == [
            (PlayerStatus.IDLE, PlayerStatus.BUFFERING),
            (PlayerStatus.BUFFERING, PlayerStatus.PLAYING),
        ]

    @pytest.mark.asyncio
    async def test_remove_listener_twice_is_harmless(self):
        machine = StatusMachine(PlayerStatus.IDLE)
        listener = MagicMock()
        machine.add_listener(listener)

        machine.remove_listener(listener)
        machine.remove_listener(listener)
        machine._set_status(PlayerStatus.PLAYING)

        listener.assert_not_called()

    @pytest.mark.asyncio
    async def test_wait_for_current_status_returns_immediately(self):
        machine = StatusMachine(PlayerStatus.IDLE)

        assert await machine.wait_for(PlayerStatus.IDLE, 0.01) is machine

    @pytest.mark.asyncio
    async def test_wait_for_resolves_on_transition(self):
        machine = StatusMachine(PlayerStatus.IDLE)
        task = asyncio.create_task(machine.wait_for(PlayerStatus.PLAYING, 1))
        await settle()

        machine._set_status(PlayerStatus.PLAYING)

        assert await task is machine
        assert machine._waiters == []

    @pytest.mark.asyncio
    async def test_wait_for_times_out_and_cleans_up(self):
        machine = StatusMachine(PlayerStatus.IDLE)

        with pytest.raises(asyncio.TimeoutError):
            await machine.wait_for(PlayerStatus.PLAYING, 0.01)

        assert machine._waiters == []


class TestVoiceConnection:
    """Tests for the shared VoiceConnection behaviour."""

    @pytest.mark.asyncio
    async def test_destroy_rejects_pending_waiters(self):
        connection = FakeConnection(1, 100)
        task = asyncio.create_task(connection.wait_for(ConnectionStatus.READY, 1))
        await settle()

        connection.destroy()

        with pytest.raises(VoiceConnectionDestroyed):
            await task

    @pytest.mark.asyncio
    async def test_wait_on_destroyed_connection_fails_fast(self):
        connection = FakeConnection(1, 100)
        connection.destroy()

        with pytest.raises(VoiceConnectionDestroyed):
            await connection.wait_for(ConnectionStatus.READY, 1)
        assert await connection.wait_for(ConnectionStatus.DESTROYED, 1) is connection

    @pytest.mark.asyncio
    async def test_destroy_is_idempotent_and_detaches_player(self):
        connection = ready_connection()
        player = AudioPlayer()
        connection.subscribe(player)

        connection.destroy()
        connection.destroy()

        assert connection.teardowns == 1
        assert connection.player is None
        assert player.connection is None
        assert player._on_connection_status not in connection._listeners

    @pytest.mark.asyncio
    async def test_subscribe_moves_player_between_connections(self):
        first = ready_connection(1, 100)
        second = ready_connection(1, 200)
        player = AudioPlayer()

        first.subscribe(player)
        second.subscribe(player)

        assert player.connection is second
        assert first.player is None
        assert player._on_connection_status not in first._listeners
        assert player._on_connection_status in second._listeners


class TestAudioPlayer:
    """Tests for the player state machine."""

    @pytest.mark.asyncio
    async def test_play_until_finished(self):
        connection = ready_connection()
        player = AudioPlayer()
        connection.subscribe(player)
        seen = []
        player.add_listener(lambda old, new: seen.append(new))

        player.play(resource())
        assert player.status is PlayerStatus.PLAYING
        assert connection.sources == ["source:clip.mp3"]

        connection.finish()
        await settle()

        assert seen == [PlayerStatus.BUFFERING, PlayerStatus.PLAYING, PlayerStatus.IDLE]
        assert player.resource is None

    @pytest.mark.asyncio
    async def test_error_reaches_error_listeners_before_idle(self):
        connection = ready_connection()
        player = AudioPlayer()
        connection.subscribe(player)
        events = []
        player.add_error_listener(lambda e: events.append(("error", str(e))))
        player.add_listener(lambda old, new: events.append(("status", new)))

        player.play(resource())
        events.clear()
        connection.finish(RuntimeError("bad frame"))
        await settle()

        assert events == [("error", "bad frame"), ("status", PlayerStatus.IDLE)]

    @pytest.mark.asyncio
    async def test_replacing_resource_ignores_stale_callback(self):
        connection = ready_connection()
        player = AudioPlayer()
        connection.subscribe(player)

        player.play(resource("first.mp3"))
        player.play(resource("second.mp3"))
        await settle()

        # stop_source() reported the first source finished; it must not end the second
        assert connection.stops == 1
        assert player.status is PlayerStatus.PLAYING
        assert player.resource.source == "source:second.mp3"

        connection.finish()
        await settle()
        assert player.status is PlayerStatus.IDLE

    @pytest.mark.asyncio
    async def test_no_connection_autopauses(self):
        player = AudioPlayer(NoSubscriberBehavior.PAUSE)

        player.play(resource())

        assert player.status is PlayerStatus.AUTO_PAUSED
        assert player.resource is not None

    @pytest.mark.asyncio
    async def test_no_connection_with_stop_behaviour_goes_idle(self):
        player = AudioPlayer(NoSubscriberBehavior.STOP)

        player.play(resource())

        assert player.status is PlayerStatus.IDLE
        assert player.resource is None

    @pytest.mark.asyncio
    async def test_subscribe_to_ready_connection_resumes_autopaused_play(self):
        player = AudioPlayer()
        player.play(resource())
        connection = ready_connection()

        connection.subscribe(player)

        assert player.status is PlayerStatus.PLAYING
        assert connection.sources == ["source:clip.mp3"]

    @pytest.mark.asyncio
    async def test_connection_drop_autopauses_and_ready_resumes(self):
        connection = ready_connection()
        player = AudioPlayer()
        connection.subscribe(player)
        player.play(resource())

        connection.drop()
        assert player.status is PlayerStatus.AUTO_PAUSED

        connection.make_ready()
        assert player.status is PlayerStatus.PLAYING
        # The stream survives the reconnect; it is not restarted
        assert connection.sources == ["source:clip.mp3"]

    @pytest.mark.asyncio
    async def test_play_source_client_error_reported_as_player_error(self):
        connection = ready_connection()
        connection.play_source = MagicMock(side_effect=discord.ClientException("Not connected to voice."))
        player = AudioPlayer()
        connection.subscribe(player)
        errors = []
        player.add_error_listener(errors.append)

        player.play(resource())

        assert player.status is PlayerStatus.IDLE
        assert len(errors) == 1
        assert isinstance(errors[0], discord.ClientException)

    @pytest.mark.asyncio
    async def test_stop_goes_idle_and_stale_finish_is_ignored(self):
        connection = ready_connection()
        player = AudioPlayer()
        connection.subscribe(player)
        player.play(resource())

        player.stop()
        await settle()

        assert player.status is PlayerStatus.IDLE
        assert connection.stops == 1


def make_discord_channel(guild_id=1, channel_id=100, voice_client=None):
    channel = MagicMock()
    channel.id = channel_id
    channel.name = f"voice-{channel_id}"
    channel.guild.id = guild_id
    channel.guild.voice_client = voice_client
    return channel


def make_voice_client(channel_id=100):
    vc = MagicMock()
    vc.channel = SimpleNamespace(id=channel_id)
    vc.is_connected.return_value = True
    vc.disconnect = AsyncMock()
    vc.move_to = AsyncMock()
    return vc


class TestDiscordVoiceConnection:
    """Tests for the discord.py backed connection."""

    @pytest.mark.asyncio
    async def test_handshake_reaches_ready(self):
        vc = make_voice_client()
        channel = make_discord_channel()
        channel.connect = AsyncMock(return_value=vc)

        connection = DiscordVoiceConnection(channel, self_deaf=True, self_mute=False, timeout=12)
        await connection.wait_for(ConnectionStatus.READY, 1)

        channel.connect.assert_awaited_once_with(timeout=12, reconnect=True, self_deaf=True, self_mute=False)
        assert connection.voice_client is vc

    @pytest.mark.asyncio
    async def test_handshake_error_rejects_waiters(self):
        channel = make_discord_channel()
        channel.connect = AsyncMock(side_effect=discord.ClientException("Already connected to a voice channel."))

        connection = DiscordVoiceConnection(channel)

        with pytest.raises(discord.ClientException):
            await connection.wait_for(ConnectionStatus.READY, 1)
        assert connection.status is ConnectionStatus.DISCONNECTED

    @pytest.mark.asyncio
    async def test_stale_voice_client_is_disconnected_first(self):
        stale = make_voice_client()
        channel = make_discord_channel(voice_client=stale)
        channel.connect = AsyncMock(return_value=make_voice_client())

        connection = DiscordVoiceConnection(channel)
        await connection.wait_for(ConnectionStatus.READY, 1)

        stale.disconnect.assert_awaited_once_with(force=True)

    @pytest.mark.asyncio
    async def test_voice_state_drop_and_reconnect(self):
        vc = make_voice_client()
        channel = make_discord_channel()
        channel.connect = AsyncMock(return_value=vc)
        connection = DiscordVoiceConnection(channel)
        await connection.wait_for(ConnectionStatus.READY, 1)
        seen = []
        connection.add_listener(lambda old, new: seen.append(new))

        connection.on_voice_state(None)
        assert connection.status is ConnectionStatus.DISCONNECTED

        connection.on_voice_state(channel)
        await connection.wait_for(ConnectionStatus.READY, 1)

        assert seen == [
            ConnectionStatus.DISCONNECTED,
            ConnectionStatus.SIGNALLING,
            ConnectionStatus.CONNECTING,
            ConnectionStatus.READY,
        ]

    @pytest.mark.asyncio
    async def test_voice_state_move_updates_channel(self):
        vc = make_voice_client()
        channel = make_discord_channel()
        channel.connect = AsyncMock(return_value=vc)
        connection = DiscordVoiceConnection(channel)
        await connection.wait_for(ConnectionStatus.READY, 1)

        other = make_discord_channel(channel_id=200)
        connection.on_voice_state(other)

        assert connection.channel_id == 200
        assert connection.status is ConnectionStatus.READY

    @pytest.mark.asyncio
    async def test_rejoin_moves_voice_client(self):
        vc = make_voice_client()
        channel = make_discord_channel()
        channel.connect = AsyncMock(return_value=vc)
        connection = DiscordVoiceConnection(channel)
        await connection.wait_for(ConnectionStatus.READY, 1)

        other = make_discord_channel(channel_id=200)
        assert connection.rejoin(other) is True
        await drain_background_tasks(1)

        vc.move_to.assert_awaited_once_with(other)
        assert connection.channel_id == 200

    @pytest.mark.asyncio
    async def test_destroy_disconnects_voice_client(self):
        vc = make_voice_client()
        channel = make_discord_channel()
        channel.connect = AsyncMock(return_value=vc)
        connection = DiscordVoiceConnection(channel)
        await connection.wait_for(ConnectionStatus.READY, 1)

        connection.destroy()
        await drain_background_tasks(1)

        vc.disconnect.assert_awaited_once_with(force=True)
        assert connection.voice_client is None
        assert connection.rejoin(make_discord_channel(channel_id=200)) is False

    @pytest.mark.asyncio
    async def test_play_source_without_client_raises(self):
        channel = make_discord_channel()
        channel.connect = AsyncMock(side_effect=asyncio.TimeoutError())
        connection = DiscordVoiceConnection(channel)
        await drain_background_tasks(1)

        with pytest.raises(discord.ClientException):
            connection.play_source(object(), lambda e: None)

    @pytest.mark.asyncio
    async def test_transport_join_player_and_resource(self):
        vc = make_voice_client()
        channel = make_discord_channel()
        channel.connect = AsyncMock(return_value=vc)
        transport = DiscordVoiceTransport()

        connection = transport.join(channel, self_deaf=True, self_mute=False)
        await connection.wait_for(ConnectionStatus.READY, 1)
        player = transport.create_player()

        assert isinstance(connection, DiscordVoiceConnection)
        assert player.no_subscriber is NoSubscriberBehavior.PAUSE
        with patch("discord.FFmpegPCMAudio") as pcm:
            resource = transport.create_resource("sounds/boo.wav")
        assert resource.source is pcm.return_value
        await transport.aclose()


class TestSafeDisconnect:
    """Tests for safe_disconnect()."""

    @pytest.mark.asyncio
    async def test_none_is_success(self):
        assert await safe_disconnect(None) is True

    @pytest.mark.asyncio
    async def test_client_errors_are_reported_not_raised(self):
        vc = MagicMock()
        vc.disconnect = AsyncMock(side_effect=discord.ClientException("gone"))

        assert await safe_disconnect(vc) is False

    @pytest.mark.asyncio
    async def test_os_errors_are_reported_not_raised(self):
        vc = MagicMock()
        vc.disconnect = AsyncMock(side_effect=OSError("transport closed"))

        assert await safe_disconnect(vc, force=False) is False
        vc.disconnect.assert_awaited_once_with(force=False)


class TestMakeAudioSource:
    """Tests for make_audio_source()."""

    def test_opus_is_passed_through(self):
        with patch("discord.FFmpegOpusAudio") as opus, patch("discord.FFmpegPCMAudio") as pcm:
            make_audio_source("sounds/Honk.OPUS")

        opus.assert_called_once_with("sounds/Honk.OPUS", codec="copy", before_options=FFMPEG_BEFORE_OPTIONS)
        pcm.assert_not_called()

    @pytest.mark.parametrize("name", ["airhorn.mp3", "boo.wav", "clip.ogg", "bell.m4a"])
    def test_other_formats_are_transcoded(self, name):
        with patch("discord.FFmpegOpusAudio") as opus, patch("discord.FFmpegPCMAudio") as pcm:
            make_audio_source(f"sounds/{name}")

        pcm.assert_called_once_with(f"sounds/{name}", before_options=FFMPEG_BEFORE_OPTIONS, options="-vn")
        opus.assert_not_called()
