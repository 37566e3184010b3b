"""
Shared fixtures for the store and sync tests.

Async code is driven with asyncio.run() inside plain test functions; every
scenario opens and closes its own store within that one event loop.
"""

from datetime import timezone
from typing import Any, Callable, Dict, List, Optional

import pytest

import normalize
from config import Settings
from context import ClinicContext
from exam_ledger import ExamLedger
from identity import IdentityKey, IdentityResolver
from local_store import LocalStore
from outbox import Outbox
from remote_mapping import student_from_remote
from sync_engine import SyncEngine


@pytest.fixture(autouse=True)
def reference_zone():
    """Read zoned birth dates in UTC unless a test picks another zone"""
    previous = normalize.get_reference_timezone()
    normalize.set_reference_timezone(timezone.utc)
    yield
    normalize.set_reference_timezone(previous)


class FakeRemote:
    """
    In-memory stand-in for the remote sheet.

    Saved records become rows returned by search/get_all, like the real
    sheet appending a row per save.
    """

    def __init__(self, rows: Optional[List[Dict[str, Any]]] = None):
        self.rows: List[Dict[str, Any]] = list(rows or [])
        self.saved: List[Dict[str, Any]] = []
        self.save_calls = 0
        self.search_calls = 0
        self.get_all_calls = 0
        self.fail_when: Optional[Callable[[Dict[str, Any]], Optional[Exception]]] = None
        self.fetch_error: Optional[Exception] = None
        self.gate = None  # asyncio.Event that holds calls until set
        self.reachable = True

    async def save(self, record):
        self.save_calls += 1
        if self.gate is not None:
            await self.gate.wait()
        if self.fail_when is not None:
            error = self.fail_when(record)
            if error is not None:
                raise error
        self.saved.append(record)
        self.rows.append(record)
        return {'success': True}

    async def search(self, name, dob, school):
        self.search_calls += 1
        if self.gate is not None:
            await self.gate.wait()
        if self.fetch_error is not None:
            raise self.fetch_error
        key = IdentityKey.of(name, dob, school)
        return [row for row in self.rows if IdentityKey.of_student(student_from_remote(row)) == key]

    async def get_all(self):
        self.get_all_calls += 1
        if self.gate is not None:
            await self.gate.wait()
        if self.fetch_error is not None:
            raise self.fetch_error
        return list(self.rows)

    async def is_reachable(self):
        return self.reachable


class Components:
    """Store plus the sync components wired to it"""

    def __init__(self, store: LocalStore, remote: FakeRemote):
        self.store = store
        self.remote = remote
        self.resolver = IdentityResolver(store)
        self.ledger = ExamLedger(store)
        self.outbox = Outbox(store)
        self.engine = SyncEngine(store, remote, self.resolver, self.ledger, self.outbox)


@pytest.fixture
def db_path(tmp_path):
    return str(tmp_path / 'DentalOfflineDB.db')


@pytest.fixture
def make_store(db_path):
    def factory(version: int = 1, name: str = 'DentalOfflineDB') -> LocalStore:
        return LocalStore(db_path, name, version)
    return factory


@pytest.fixture
def make_components(make_store):
    def factory(remote: Optional[FakeRemote] = None, version: int = 1) -> Components:
        return Components(make_store(version), remote or FakeRemote())
    return factory


@pytest.fixture
def settings(tmp_path):
    return Settings(
        remote_url='https://example.invalid/exec',
        data_dir=str(tmp_path),
        startup_sync_delay=0,
        reconnect_sync_delay=0,
        remote_timezone='UTC',
    )


@pytest.fixture
def make_context(settings):
    def factory(remote: Optional[FakeRemote] = None) -> ClinicContext:
        return ClinicContext.create(settings, remote=remote or FakeRemote())
    return factory


def remote_row(name='Juan Dela Cruz', dob='05/01/2015', school='Rizal ES', timestamp=None, **extra):
    """A row as the remote sheet exports it"""
    row = {'completeName': name, 'dob': dob, 'school': school}
    if timestamp is not None:
        row['timestamp'] = timestamp
    row.update(extra)
    return row
