"""
=============================================================================
Connectivity Monitor
=============================================================================

Turns online/offline signals into sync runs. Going online schedules a push
followed by a pull after a short delay; nothing runs while offline. The
signal comes either from the embedding application (set_online) or from
polling a reachability probe (watch).

Date: 2026-10-17
Version: 1.0
=============================================================================
"""

import asyncio
import inspect
import logging
from typing import Callable, Optional, Set


class ConnectivityMonitor:
    """Triggers SyncEngine.sync() on offline -> online transitions"""

    def __init__(self, engine, probe: Optional[Callable] = None,
                 reconnect_delay: float = 2.0, startup_delay: float = 3.0):
        """
        Initialize monitor.

        Args:
            engine: SyncEngine to drive
            probe: Optional callable (sync or async) returning True when the
                   remote endpoint is reachable; used by watch()
            reconnect_delay: Seconds between going online and syncing
            startup_delay: Seconds before the first sync when starting online
        """
        self.engine = engine
        self.probe = probe
        self.reconnect_delay = reconnect_delay
        self.startup_delay = startup_delay
        self.online = False
        self.logger = logging.getLogger('ConnectivityMonitor')
        self._scheduled: Set[asyncio.Task] = set()

    def start(self, initially_online: bool) -> Optional[asyncio.Task]:
        """
        Record the initial state and schedule the first sync when online.

        Returns:
            The scheduled sync task, or None when offline
        """
        self.online = initially_online
        self.logger.info(f"Starting {'online' if initially_online else 'offline'}")
        if initially_online:
            return self._schedule(self.startup_delay)
        return None

    def set_online(self, online: bool) -> Optional[asyncio.Task]:
        """
        Feed a connectivity signal.

        Returns:
            The scheduled sync task on an offline -> online transition,
            otherwise None
        """
        was_online = self.online
        self.online = online

        if online and not was_online:
            self.logger.info("Back online; syncing shortly")
            return self._schedule(self.reconnect_delay)
        if was_online and not online:
            self.logger.info("Offline; saving locally")
        return None

    async def check(self) -> bool:
        """Run the probe once and feed the result to set_online()"""
        if self.probe is None:
            return self.online
        result = self.probe()
        if inspect.isawaitable(result):
            result = await result
        self.set_online(bool(result))
        return self.online

    async def watch(self, interval: float = 15.0, stop: Optional[asyncio.Event] = None) -> None:
        """
        Poll the probe until stop is set.

        Args:
            interval: Seconds between probes
            stop: Event that ends the loop
        """
        stop = stop or asyncio.Event()
        while not stop.is_set():
            await self.check()
            try:
                await asyncio.wait_for(stop.wait(), timeout=interval)
            except asyncio.TimeoutError:
                pass

    async def close(self) -> None:
        """Cancel sync runs that have not started yet"""
        tasks = list(self._scheduled)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    def _schedule(self, delay: float) -> asyncio.Task:
        task = asyncio.ensure_future(self._sync_after(delay))
        self._scheduled.add(task)
        task.add_done_callback(self._scheduled.discard)
        return task

    async def _sync_after(self, delay: float):
        await asyncio.sleep(delay)
        if not self.online:
            self.logger.info("Went offline before sync started; skipping")
            return None
        push_report, pull_report = await self.engine.sync()
        self.logger.info(push_report.summary())
        return push_report, pull_report
