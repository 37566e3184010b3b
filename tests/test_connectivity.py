"""
Tests for turning online/offline signals into sync runs.
"""

import asyncio

from connectivity import ConnectivityMonitor
from sync_engine import PullReport, SyncReport


class CountingEngine:
    def __init__(self):
        self.sync_calls = 0

    async def sync(self):
        self.sync_calls += 1
        return SyncReport(success_count=1), PullReport()


def _monitor(**kwargs):
    engine = CountingEngine()
    kwargs.setdefault('reconnect_delay', 0)
    kwargs.setdefault('startup_delay', 0)
    return ConnectivityMonitor(engine, **kwargs), engine


def test_going_online_schedules_one_sync():
    monitor, engine = _monitor()

    async def scenario():
        assert monitor.start(False) is None
        task = monitor.set_online(True)
        repeated = monitor.set_online(True)
        result = await task
        return repeated, result

    repeated, (push_report, pull_report) = asyncio.run(scenario())
    assert repeated is None
    assert push_report.success_count == 1
    assert engine.sync_calls == 1


def test_going_offline_does_not_sync():
    monitor, engine = _monitor()

    async def scenario():
        monitor.start(True)
        await asyncio.sleep(0.05)
        return monitor.set_online(False)

    assert asyncio.run(scenario()) is None
    assert engine.sync_calls == 1  # the startup sync only
    assert monitor.online is False


def test_offline_before_delay_skips_sync():
    monitor, engine = _monitor(reconnect_delay=0.05)

    async def scenario():
        monitor.start(False)
        task = monitor.set_online(True)
        monitor.set_online(False)
        return await task

    assert asyncio.run(scenario()) is None
    assert engine.sync_calls == 0


def test_check_uses_async_probe():
    states = [False, True]

    async def probe():
        return states.pop(0)

    monitor, engine = _monitor(probe=probe)

    async def scenario():
        monitor.start(False)
        first = await monitor.check()
        second = await monitor.check()
        await asyncio.sleep(0.05)
        return first, second

    first, second = asyncio.run(scenario())
    assert first is False
    assert second is True
    assert engine.sync_calls == 1


def test_check_without_probe_keeps_state():
    monitor, _ = _monitor()

    async def scenario():
        monitor.start(False)
        return await monitor.check()

    assert asyncio.run(scenario()) is False


def test_close_cancels_scheduled_sync():
    monitor, engine = _monitor(reconnect_delay=10)

    async def scenario():
        monitor.start(False)
        task = monitor.set_online(True)
        await monitor.close()
        return task

    task = asyncio.run(scenario())
    assert task.cancelled()
    assert engine.sync_calls == 0


def test_watch_stops_on_event():
    monitor, engine = _monitor(probe=lambda: True)

    async def scenario():
        stop = asyncio.Event()
        monitor.start(False)
        watcher = asyncio.ensure_future(monitor.watch(interval=0.01, stop=stop))
        await asyncio.sleep(0.05)
        stop.set()
        await watcher
        await monitor.close()

    asyncio.run(scenario())
    assert monitor.online is True
    assert engine.sync_calls == 1
