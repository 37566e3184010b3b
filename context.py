"""
=============================================================================
Client Context
=============================================================================

Owns every long-lived piece of the client (store handle, remote client,
sync components, connectivity state, the student currently on screen).
The embedding application creates one context and passes it around instead
of relying on module-level globals.

Usage:
    ctx = ClinicContext.create(load_settings())
    await ctx.open(initially_online=True)
    ...
    await ctx.close()

Date: 2026-10-17
Version: 1.0
=============================================================================
"""

import logging
from typing import Optional

from config import Settings
from connectivity import ConnectivityMonitor
from exam_ledger import ExamLedger
from identity import IdentityResolver
from local_store import LocalStore
from normalize import parse_timezone, set_reference_timezone
from outbox import Outbox
from remote_client import RemoteBackend
from sync_engine import SyncEngine


class ClinicContext:
    """All state of one running client"""

    def __init__(self, settings: Settings, store: LocalStore, remote,
                 resolver: IdentityResolver, ledger: ExamLedger, outbox: Outbox,
                 engine: SyncEngine, monitor: ConnectivityMonitor):
        self.settings = settings
        self.store = store
        self.remote = remote
        self.resolver = resolver
        self.ledger = ledger
        self.outbox = outbox
        self.engine = engine
        self.monitor = monitor
        self.current_student_id: Optional[int] = None
        self.logger = logging.getLogger('ClinicContext')

    @classmethod
    def create(cls, settings: Settings, remote=None) -> 'ClinicContext':
        """
        Wire up the components (nothing is opened yet).

        Args:
            settings: Runtime settings
            remote: Optional remote client; a RemoteBackend for
                    settings.remote_url is built when omitted

        Returns:
            ClinicContext

        Raises:
            ValueError: If settings.remote_timezone cannot be read
        """
        set_reference_timezone(parse_timezone(settings.remote_timezone))

        store = LocalStore(settings.db_path, settings.store_name, settings.store_version,
                           backup_dir=settings.backup_dir)
        if remote is None:
            remote = RemoteBackend(settings.remote_url, timeout=settings.request_timeout)

        resolver = IdentityResolver(store)
        ledger = ExamLedger(store)
        outbox = Outbox(store)
        engine = SyncEngine(store, remote, resolver, ledger, outbox)

        probe = getattr(remote, 'is_reachable', None)
        monitor = ConnectivityMonitor(
            engine,
            probe=probe,
            reconnect_delay=settings.reconnect_sync_delay,
            startup_delay=settings.startup_sync_delay,
        )
        return cls(settings, store, remote, resolver, ledger, outbox, engine, monitor)

    @property
    def online(self) -> bool:
        return self.monitor.online

    async def open(self, initially_online: bool = False) -> 'ClinicContext':
        """
        Open the local store and start connectivity tracking.

        Raises:
            StorageUnavailable: If the local store cannot be opened
        """
        await self.store.open()
        pending = await self.outbox.count_unsynced()
        if pending:
            self.logger.info(f"Found {pending} pending records to sync")
        self.monitor.start(initially_online)
        return self

    async def close(self) -> None:
        await self.monitor.close()
        await self.store.close()
        close_remote = getattr(self.remote, 'close', None)
        if close_remote is not None:
            close_remote()
