"""
=============================================================================
Outbox (pending collection)
=============================================================================

Durable queue of local saves waiting for the remote sheet to acknowledge
them. An entry is either absent, unsynced, or synced; it only becomes
synced after a successful `save` response.

Date: 2026-10-17
Version: 1.0
=============================================================================
"""

import logging
from typing import Any, Dict, List, Optional

from local_store import LocalStore, StoreTransaction
from models import PendingChange
from normalize import utcnow

ENTITY_STUDENT = 'student'
ENTITY_EXAM = 'exam'


class Outbox:
    """Queue of remote saves stored in the pending collection"""

    def __init__(self, store: LocalStore):
        self.store = store
        self.logger = logging.getLogger('Outbox')

    async def enqueue(self, entity_type: str, entity_id: int, payload: Dict[str, Any],
                      tx: Optional[StoreTransaction] = None) -> int:
        """
        Queue a save for the remote sheet.

        Args:
            entity_type: "student" or "exam"
            entity_id: Local id of the saved record
            payload: Wire record to send as action=save
            tx: Transaction to run in (use the one that wrote the record)

        Returns:
            Id of the outbox entry
        """
        if entity_type not in (ENTITY_STUDENT, ENTITY_EXAM):
            raise ValueError(f"Unknown outbox entity type: {entity_type}")

        entry = PendingChange(
            entity_type=entity_type,
            entity_id=entity_id,
            payload=payload,
            timestamp=utcnow(),
            synced=False,
            attempts=0,
        )
        async with self.store.use(tx) as tx:
            entry_id = await tx.put('pending', entry)

        self.logger.info(f"Queued {entity_type} {entity_id} for sync (entry {entry_id})")
        return entry_id

    async def list_unsynced(self, tx: Optional[StoreTransaction] = None) -> List[PendingChange]:
        """Unsynced entries, oldest submission first"""
        async with self.store.use(tx) as tx:
            entries = await tx.get_all_by_index('pending', 'synced', False)
        return sorted(entries, key=lambda e: (e.timestamp, e.id))

    async def count_unsynced(self, tx: Optional[StoreTransaction] = None) -> int:
        async with self.store.use(tx) as tx:
            return await tx.count('pending', 'synced', False)

    async def mark_synced(self, entry_id: int, tx: Optional[StoreTransaction] = None) -> Optional[PendingChange]:
        """
        Record the remote acknowledgement of an entry.

        Returns:
            The updated entry, or None if it no longer exists
        """
        async with self.store.use(tx) as tx:
            entry = await tx.get('pending', entry_id)
            if entry is None:
                return None
            entry.synced = True
            entry.synced_at = utcnow()
            entry.attempts = (entry.attempts or 0) + 1
            entry.last_error = None
            await tx.put('pending', entry)
        return entry

    async def record_failure(self, entry_id: int, error: str,
                             tx: Optional[StoreTransaction] = None) -> None:
        """Keep the entry queued and remember why the last attempt failed"""
        async with self.store.use(tx) as tx:
            entry = await tx.get('pending', entry_id)
            if entry is None:
                return
            entry.attempts = (entry.attempts or 0) + 1
            entry.last_error = error
            await tx.put('pending', entry)

    async def purge_synced(self, tx: Optional[StoreTransaction] = None) -> int:
        """
        Delete acknowledged entries.

        Returns:
            Number of entries removed
        """
        async with self.store.use(tx) as tx:
            entries = await tx.get_all_by_index('pending', 'synced', True)
            for entry in entries:
                await tx.delete('pending', entry.id)

        if entries:
            self.logger.info(f"Purged {len(entries)} synced outbox entries")
        return len(entries)
