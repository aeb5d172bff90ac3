"""
Tests for IdleTimer.

These tests verify that:
1. A countdown fires once after the timeout
2. Rescheduling replaces the pending countdown
3. Cancel prevents the expiry
4. A disabled timeout never schedules anything
"""

import asyncio

import pytest

from core.idle import IdleTimer


class TestIdleTimer:
    """Tests for schedule/cancel/expiry."""

    @pytest.mark.asyncio
    async def test_fires_once_after_timeout(self):
        expired = []
        timer = IdleTimer(0.05, expired.append)

        timer.schedule(7)
        assert timer.is_scheduled(7)
        await asyncio.sleep(0.15)

        assert expired == [7]
        assert not timer.is_scheduled(7)

    @pytest.mark.asyncio
    async def test_reschedule_replaces_previous_countdown(self):
        expired = []
        timer = IdleTimer(0.1, expired.append)

        timer.schedule(1)
        await asyncio.sleep(0.06)
        timer.schedule(1)
        await asyncio.sleep(0.06)

        # First countdown would have fired by now
        assert expired == []

        await asyncio.sleep(0.1)
        assert expired == [1]

    @pytest.mark.asyncio
    async def test_cancel_prevents_expiry(self):
        expired = []
        timer = IdleTimer(0.05, expired.append)

        timer.schedule(1)
        assert timer.cancel(1) is True
        await asyncio.sleep(0.1)

        assert expired == []
        assert timer.cancel(1) is False

    @pytest.mark.asyncio
    async def test_guilds_are_independent(self):
        expired = []
        timer = IdleTimer(0.05, expired.append)

        timer.schedule(1)
        timer.schedule(2)
        timer.cancel(1)
        await asyncio.sleep(0.1)

        assert expired == [2]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("timeout", [None, 0])
    async def test_disabled_timeout_never_schedules(self, timeout):
        expired = []
        timer = IdleTimer(timeout, expired.append)

        timer.schedule(1)

        assert not timer.enabled
        assert not timer.is_scheduled(1)

    @pytest.mark.asyncio
    async def test_async_callback_is_awaited(self):
        done = asyncio.Event()

        async def on_expire(guild_id):
            await asyncio.sleep(0)
            done.set()

        timer = IdleTimer(0.01, on_expire)
        timer.schedule(1)

        await asyncio.wait_for(done.wait(), 1)

    @pytest.mark.asyncio
    async def test_callback_can_cancel_its_own_guild(self):
        """on_expire usually tears down the guild, which cancels the timer again."""
        calls = []
        timer = IdleTimer(0.01, None)

        def on_expire(guild_id):
            calls.append(timer.cancel(guild_id))

        timer.on_expire = on_expire
        timer.schedule(1)
        await asyncio.sleep(0.05)

        assert calls == [False]

    @pytest.mark.asyncio
    async def test_cancel_all(self):
        expired = []
        timer = IdleTimer(0.05, expired.append)

        for guild_id in (1, 2, 3):
            timer.schedule(guild_id)
        timer.cancel_all()
        await asyncio.sleep(0.1)

        assert expired == []
