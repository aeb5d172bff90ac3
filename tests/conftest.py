import asyncio
import sys
from pathlib import Path
from types import SimpleNamespace

import pytest

# Ensure project root is on sys.path when pytest is invoked from elsewhere
PROJECT_ROOT = Path(__file__).parent.parent.resolve()
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from core.transport import (
    AudioPlayer,
    AudioResource,
    ConnectionStatus,
    NoSubscriberBehavior,
    VoiceConnection,
)


class FakeConnection(VoiceConnection):
    """VoiceConnection driven by the test instead of Discord.

    Audio "plays" until the test calls finish(); finish() goes through the
    same thread-safe callback path discord.py uses.
    """

    def __init__(self, guild_id: int, channel_id: int) -> None:
        super().__init__(guild_id, channel_id)
        self.rejoins: list[int] = []
        self.teardowns = 0
        self.sources: list = []
        self.after = None
        self.stops = 0

    # Test controls

    def make_ready(self) -> None:
        if self.destroyed:
            return
        self._set_status(ConnectionStatus.CONNECTING)
        self._set_status(ConnectionStatus.READY)

    def fail(self, exc: Exception) -> None:
        self._set_status(ConnectionStatus.DISCONNECTED)
        self._fail_waiters(exc)

    def drop(self) -> None:
        self._set_status(ConnectionStatus.DISCONNECTED)

    def finish(self, error: Exception | None = None) -> None:
        """Simulate the audio thread reporting the end of the current source."""
        self.after(error)

    # VoiceConnection hooks

    def rejoin(self, channel) -> bool:
        if self.destroyed:
            return False
        self.rejoins.append(channel.id)
        self.channel_id = channel.id
        return True

    def _teardown(self) -> None:
        self.teardowns += 1

    def play_source(self, source, after) -> None:
        self.sources.append(source)
        self.after = after

    def stop_source(self) -> None:
        self.stops += 1
        if self.after is not None:
            # discord.py reports a stopped source as finished
            self.after(None)


class FakeTransport:
    """Records joins, players and resources. Connections become READY on the next loop tick."""

    def __init__(self, auto_ready: bool = True) -> None:
        self.auto_ready = auto_ready
        self.fail_with: Exception | None = None
        self.joins: list[tuple[int, dict]] = []
        self.connections: list[FakeConnection] = []
        self.players: list[AudioPlayer] = []
        self.resources: list[AudioResource] = []
        self.closed = False

    def join(self, channel, *, self_deaf: bool = True, self_mute: bool = False) -> FakeConnection:
        self.joins.append((channel.id, {"self_deaf": self_deaf, "self_mute": self_mute}))
        connection = FakeConnection(channel.guild.id, channel.id)
        self.connections.append(connection)
        loop = asyncio.get_running_loop()
        if self.fail_with is not None:
            loop.call_soon(connection.fail, self.fail_with)
        elif self.auto_ready:
            loop.call_soon(connection.make_ready)
        return connection

    def create_player(self, no_subscriber: NoSubscriberBehavior = NoSubscriberBehavior.PAUSE) -> AudioPlayer:
        player = AudioPlayer(no_subscriber)
        self.players.append(player)
        return player

    def create_resource(self, path) -> AudioResource:
        resource = AudioResource(Path(path), source=f"source:{Path(path).name}")
        self.resources.append(resource)
        return resource

    async def aclose(self) -> None:
        self.closed = True


def make_channel(guild_id: int = 1, channel_id: int = 100, name: str | None = None):
    """Minimal stand-in for discord.VoiceChannel: .id, .name, .guild.id."""
    return SimpleNamespace(
        id=channel_id,
        name=name or f"voice-{channel_id}",
        guild=SimpleNamespace(id=guild_id),
    )


async def settle(ticks: int = 3) -> None:
    """Let call_soon / call_soon_threadsafe callbacks run."""
    for _ in range(ticks):
        await asyncio.sleep(0)


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def clean_env(monkeypatch):
    """Remove every environment variable the config layer reads."""
    for key in (
        "DISCORD_TOKEN", "GUILD_ID", "CONFIG_PATH", "SOUNDS_PATH", "LIST_PAGE_SIZE",
        "MAX_UPLOAD_MB", "VOICE_IDLE_TIMEOUT_SECONDS", "WEB_ENABLED", "WEB_HOST",
        "WEB_PORT", "WEB_API_KEY", "WEB_STATIC_PATH", "LOG_LEVEL", "LOG_DESTINATION",
        "BRIEF_AUTO_DELETE",
    ):
        monkeypatch.delenv(key, raising=False)
    return monkeypatch
