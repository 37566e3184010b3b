"""
=============================================================================
Local Store for Offline Dental Field Records
=============================================================================

Durable, versioned storage kept on the screening device (SQLite through
SQLAlchemy's asyncio extension).

Collections:
- students  (indexes: name, dob, school)
- exams     (indexes: student_id, date, synced)
- pending   (indexes: synced, timestamp)

The store is opened once and reused for the process lifetime. Concurrent
open() calls share one initialization task. When the stored schema version
differs from the expected one every table is dropped and recreated; the
unsynced outbox and the records it points to are exported first and put
back afterwards.

Usage:
    store = LocalStore('data/DentalOfflineDB.db', 'DentalOfflineDB', 1)
    await store.open()

    async with store.transaction() as tx:
        student_id = await tx.put('students', student)
        pending = await tx.get_all_by_index('pending', 'synced', False)

    await store.close()

Date: 2026-10-17
Version: 1.0
=============================================================================
"""

import asyncio
import logging
import os
from contextlib import asynccontextmanager
from typing import Any, Callable, Dict, List, Optional, Tuple

from sqlalchemy import MetaData, event, func, inspect, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

import export_utils
from errors import StorageUnavailable, TransactionFailed
from models import Base, Exam, PendingChange, StoreMeta, Student
from normalize import normalize_dob, normalize_key

COLLECTIONS = {
    'students': Student,
    'exams': Exam,
    'pending': PendingChange,
}

# index name -> (column, value normalizer)
INDEXES: Dict[str, Dict[str, Tuple[Any, Optional[Callable]]]] = {
    'students': {
        'name': (Student.name_key, normalize_key),
        'dob': (Student.dob, normalize_dob),
        'school': (Student.school_key, normalize_key),
    },
    'exams': {
        'student_id': (Exam.student_id, None),
        'date': (Exam.visit_date, None),
        'synced': (Exam.synced, bool),
    },
    'pending': {
        'synced': (PendingChange.synced, bool),
        'timestamp': (PendingChange.timestamp, None),
    },
}


def _model_for(collection: str):
    try:
        return COLLECTIONS[collection]
    except KeyError:
        raise TransactionFailed(f"Unknown collection: {collection}")


def _index_for(collection: str, index_name: str):
    _model_for(collection)
    try:
        return INDEXES[collection][index_name]
    except KeyError:
        raise TransactionFailed(f"Unknown index {index_name!r} on {collection}")


class StoreTransaction:
    """
    CRUD operations bound to one open transaction.

    Everything done through one StoreTransaction commits or rolls back
    together when the surrounding `store.transaction()` block exits.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    async def put(self, collection: str, record) -> int:
        """
        Insert or upsert a record.

        Args:
            collection: Collection name
            record: Model instance; a record without id is inserted

        Returns:
            Surrogate id of the stored record
        """
        model = _model_for(collection)
        if not isinstance(record, model):
            raise TransactionFailed(f"{type(record).__name__} cannot be stored in {collection}")

        if record.id is None:
            self.session.add(record)
            await self.session.flush()
            return record.id

        merged = await self.session.merge(record)
        await self.session.flush()
        return merged.id

    async def get(self, collection: str, record_id: int):
        return await self.session.get(_model_for(collection), record_id)

    async def get_all(self, collection: str) -> List:
        model = _model_for(collection)
        result = await self.session.execute(select(model).order_by(model.id))
        return list(result.scalars().all())

    async def get_all_by_index(self, collection: str, index_name: str, value) -> List:
        """
        All records whose indexed field equals value, in insertion order.

        Name and school lookups are case-insensitive and dob lookups accept
        any supported date form.
        """
        model = _model_for(collection)
        column, normalizer = _index_for(collection, index_name)
        if normalizer is not None:
            value = normalizer(value)
        result = await self.session.execute(
            select(model).where(column == value).order_by(model.id)
        )
        return list(result.scalars().all())

    async def count(self, collection: str, index_name: Optional[str] = None, value=None) -> int:
        model = _model_for(collection)
        query = select(func.count()).select_from(model)
        if index_name is not None:
            column, normalizer = _index_for(collection, index_name)
            if normalizer is not None:
                value = normalizer(value)
            query = query.where(column == value)
        result = await self.session.execute(query)
        return int(result.scalar_one())

    async def delete(self, collection: str, record_id: int) -> bool:
        """
        Delete a record by id.

        Returns:
            True if a record was removed, False if none existed
        """
        record = await self.get(collection, record_id)
        if record is None:
            return False
        await self.session.delete(record)
        await self.session.flush()
        return True


class LocalStore:
    """
    SQLite-backed local store with shared, idempotent initialization.
    """

    def __init__(self, db_path: str, name: str, version: int, backup_dir: Optional[str] = None):
        """
        Initialize local store (nothing is opened yet).

        Args:
            db_path: SQLite database file (created if missing)
            name: Store namespace recorded in store_meta
            version: Expected schema version
            backup_dir: Where pre-upgrade exports are written
                        (defaults to a backups/ folder next to the database)
        """
        self.db_path = db_path
        self.name = name
        self.version = version
        self.backup_dir = backup_dir or os.path.join(os.path.dirname(os.path.abspath(db_path)), 'backups')
        self.logger = logging.getLogger('LocalStore')

        self._engine = None
        self._session_factory = None
        self._opening: Optional[asyncio.Future] = None
        self.initializations = 0  # completed schema setups, for diagnostics
        self.last_backup: Optional[str] = None

    @property
    def is_open(self) -> bool:
        return self._session_factory is not None

    async def open(self) -> 'LocalStore':
        """
        Open the store, creating or upgrading the schema on first use.

        Safe to call from many coroutines at once: they all wait on the same
        initialization task.

        Raises:
            StorageUnavailable: If the database cannot be opened
        """
        if self.is_open:
            return self

        if self._opening is None:
            self._opening = asyncio.ensure_future(self._initialize())
        opening = self._opening

        try:
            await asyncio.shield(opening)
        except Exception:
            # Let the next caller retry from scratch
            if self._opening is opening:
                self._opening = None
            raise
        return self

    async def close(self) -> None:
        """Dispose the engine; the next open() initializes again"""
        engine = self._engine
        self._engine = None
        self._session_factory = None
        self._opening = None
        if engine is not None:
            await engine.dispose()
            self.logger.debug("Local store closed")

    @asynccontextmanager
    async def transaction(self):
        """
        Open one atomic transaction.

        Yields:
            StoreTransaction bound to the transaction

        Raises:
            TransactionFailed: If any statement or the commit fails
        """
        await self.open()
        session = self._session_factory()
        try:
            async with session.begin():
                yield StoreTransaction(session)
        except SQLAlchemyError as e:
            self.logger.error(f"Transaction failed: {e}")
            raise TransactionFailed(str(e)) from e
        finally:
            await session.close()

    @asynccontextmanager
    async def use(self, tx: Optional[StoreTransaction] = None):
        """Reuse the caller's transaction, or open a new one if none given"""
        if tx is not None:
            yield tx
        else:
            async with self.transaction() as new_tx:
                yield new_tx

    # ========================================================================
    # Single-operation shortcuts
    # ========================================================================

    async def put(self, collection: str, record) -> int:
        async with self.transaction() as tx:
            return await tx.put(collection, record)

    async def get(self, collection: str, record_id: int):
        async with self.transaction() as tx:
            return await tx.get(collection, record_id)

    async def get_all(self, collection: str) -> List:
        async with self.transaction() as tx:
            return await tx.get_all(collection)

    async def get_all_by_index(self, collection: str, index_name: str, value) -> List:
        async with self.transaction() as tx:
            return await tx.get_all_by_index(collection, index_name, value)

    async def count(self, collection: str, index_name: Optional[str] = None, value=None) -> int:
        async with self.transaction() as tx:
            return await tx.count(collection, index_name, value)

    async def delete(self, collection: str, record_id: int) -> bool:
        async with self.transaction() as tx:
            return await tx.delete(collection, record_id)

    # ========================================================================
    # Schema Management
    # ========================================================================

    async def _initialize(self) -> None:
        self.logger.info(f"Opening local store: {os.path.abspath(self.db_path)}")
        engine = None
        try:
            db_dir = os.path.dirname(os.path.abspath(self.db_path))
            os.makedirs(db_dir, exist_ok=True)

            engine = create_async_engine(
                f'sqlite+aiosqlite:///{self.db_path}',
                echo=False,
                connect_args={'timeout': 15},
            )
            _install_sqlite_hooks(engine)

            async with engine.begin() as conn:
                await conn.run_sync(self._prepare_schema)
        except StorageUnavailable:
            if engine is not None:
                await engine.dispose()
            raise
        except (OSError, SQLAlchemyError) as e:
            if engine is not None:
                await engine.dispose()
            self.logger.error(f"Cannot open local store {self.db_path}: {e}")
            raise StorageUnavailable(f"Cannot open local store {self.db_path}: {e}") from e

        self._engine = engine
        self._session_factory = async_sessionmaker(engine, expire_on_commit=False)
        self.initializations += 1
        self.logger.info(f"Local store ready ({self.name} v{self.version})")

    def _prepare_schema(self, conn) -> None:
        """Create, keep or rebuild the schema (runs on the sync connection)"""
        tables = set(inspect(conn).get_table_names())

        if not tables:
            Base.metadata.create_all(conn)
            self._write_meta(conn)
            self.logger.info(f"Created local store schema (version {self.version})")
            return

        stored = self._read_meta(conn, tables)
        if stored.get('version') == str(self.version) and stored.get('name') == self.name:
            # Same version: only add tables that are missing
            Base.metadata.create_all(conn)
            return

        self._rebuild(conn, stored.get('version'))

    def _rebuild(self, conn, stored_version: Optional[str]) -> None:
        self.logger.warning(
            f"Local store version changed ({stored_version} -> {self.version}); recreating collections"
        )
        old = MetaData()
        old.reflect(bind=conn)

        preserved = export_utils.collect_unsynced_rows(conn, old)
        kept = sum(len(rows) for rows in preserved.values())
        if kept:
            self.last_backup = export_utils.write_upgrade_backup(
                preserved, self.backup_dir, stored_version, self.version
            )
            self.logger.info(f"Exported {kept} unsynced rows to {self.last_backup}")

        old.drop_all(bind=conn)
        Base.metadata.create_all(conn)
        export_utils.restore_rows(conn, Base.metadata, preserved)
        self._write_meta(conn)

        if kept:
            self.logger.info(f"Re-imported {kept} unsynced rows after upgrade")

    def _read_meta(self, conn, tables) -> Dict[str, str]:
        if StoreMeta.__tablename__ not in tables:
            return {}
        table = StoreMeta.__table__
        rows = conn.execute(select(table.c.key, table.c.value)).all()
        return {key: value for key, value in rows}

    def _write_meta(self, conn) -> None:
        table = StoreMeta.__table__
        conn.execute(table.delete())
        conn.execute(table.insert(), [
            {'key': 'name', 'value': self.name},
            {'key': 'version', 'value': str(self.version)},
        ])


def _install_sqlite_hooks(engine) -> None:
    """Foreign keys on, and every transaction takes the write lock up front"""

    @event.listens_for(engine.sync_engine, 'connect')
    def _on_connect(dbapi_connection, connection_record):
        # Let SQLAlchemy emit BEGIN itself (see _on_begin)
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute('PRAGMA foreign_keys = ON')
        cursor.close()

    @event.listens_for(engine.sync_engine, 'begin')
    def _on_begin(conn):
        conn.exec_driver_sql('BEGIN IMMEDIATE')
