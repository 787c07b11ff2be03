"""Tests for connectivity sources."""
from unittest.mock import AsyncMock, patch

import pytest
from apscheduler.schedulers.asyncio import AsyncIOScheduler

from quickquote.sync.connectivity import (
    POLL_JOB_ID,
    ConnectivityState,
    ManualConnectivitySource,
    SocketConnectivitySource,
)


class TestConnectivityState:
    @pytest.mark.parametrize(
        "connected, reachable, online",
        [(True, True, True), (True, None, True), (True, False, False), (False, None, False), (False, False, False)],
    )
    def test_is_online(self, connected, reachable, online):
        assert ConnectivityState(connected, reachable).is_online is online


class TestManualConnectivitySource:
    @pytest.mark.asyncio
    async def test_defaults_to_connected_unknown(self):
        state = await ManualConnectivitySource().get_state()
        assert state == ConnectivityState(is_connected=True, is_internet_reachable=None)

    def test_publishes_only_on_change(self):
        source = ManualConnectivitySource()
        seen = []
        source.subscribe(seen.append)

        offline = ConnectivityState(False, False)
        source.set_state(offline)
        source.set_state(offline)

        assert seen == [offline]

    def test_unsubscribe(self):
        source = ManualConnectivitySource()
        seen = []
        unsubscribe = source.subscribe(seen.append)
        unsubscribe()

        source.set_state(ConnectivityState(False, False))

        assert seen == []

    def test_raising_subscriber_does_not_block_others(self):
        source = ManualConnectivitySource()
        seen = []

        def bad(state):
            raise RuntimeError("boom")

        source.subscribe(bad)
        source.subscribe(seen.append)
        source.set_state(ConnectivityState(False, False))

        assert len(seen) == 1


class TestSocketConnectivitySource:
    @pytest.mark.asyncio
    async def test_no_route_is_offline(self):
        source = SocketConnectivitySource()
        with patch.object(source, "_has_route", return_value=False):
            state = await source.get_state()
        assert state == ConnectivityState(False, False)

    @pytest.mark.asyncio
    async def test_route_without_reachability(self):
        source = SocketConnectivitySource()
        with patch.object(source, "_has_route", return_value=True), \
             patch.object(source, "_can_reach", AsyncMock(return_value=False)):
            state = await source.get_state()
        assert state == ConnectivityState(True, False)
        assert state.is_online is False

    @pytest.mark.asyncio
    async def test_unreachable_host_fails_tcp_probe(self):
        with patch(
            "quickquote.sync.connectivity.asyncio.open_connection",
            AsyncMock(side_effect=OSError("refused")),
        ):
            assert await SocketConnectivitySource()._can_reach() is False

    @pytest.mark.asyncio
    async def test_poll_publishes_transitions_only(self):
        source = SocketConnectivitySource()
        seen = []
        source.subscribe(seen.append)
        states = [ConnectivityState(True, True), ConnectivityState(True, True), ConnectivityState(False, False)]

        with patch.object(source, "get_state", AsyncMock(side_effect=states)):
            await source.poll()
            await source.poll()
            await source.poll()

        assert seen == [ConnectivityState(True, True), ConnectivityState(False, False)]

    def test_start_polling_registers_interval_job(self):
        scheduler = AsyncIOScheduler()
        SocketConnectivitySource().start_polling(scheduler, interval_seconds=7)

        job = scheduler.get_job(POLL_JOB_ID)
        assert job is not None
        assert job.trigger.interval.total_seconds() == 7
