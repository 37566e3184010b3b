"""
=============================================================================
Sync Engine for Offline Dental Field Records
=============================================================================

Moves records between the local store and the remote sheet:

1. push(): sends every unsynced outbox entry as action=save, marks it synced
   on success, keeps it queued on failure and carries on with the rest
2. pull(): fetches remote rows (all of them, or one student's), groups them
   by natural key, upserts the student and imports visits not seen before
3. sync(): push followed by pull

Each of push() and pull() runs at most once at a time; a call made while one
is in flight returns immediately with a skipped report.

Date: 2026-10-17
Version: 1.0
=============================================================================
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from errors import DentalRecordsError, MalformedResponse, RemoteRejected, RemoteUnreachable
from exam_ledger import ExamLedger
from identity import IdentityKey, IdentityResolver
from local_store import LocalStore
from models import PendingChange, StudentInfo, VisitInfo
from outbox import ENTITY_EXAM, Outbox
from remote_mapping import exam_from_remote, student_from_remote


@dataclass
class SyncReport:
    """Outcome of one push run"""
    success_count: int = 0
    fail_count: int = 0
    errors: List[str] = field(default_factory=list)
    skipped: bool = False

    def summary(self) -> str:
        """Status line for the UI"""
        if self.skipped:
            return "Sync already in progress"
        if self.success_count == 0 and self.fail_count == 0:
            return "No pending records to sync"
        if self.fail_count == 0:
            return f"Successfully synced {self.success_count} records"
        return f"Synced {self.success_count}, failed {self.fail_count}"


@dataclass
class PullReport:
    """Outcome of one pull run"""
    rows_received: int = 0
    rows_ignored: int = 0
    students_upserted: int = 0
    exams_imported: int = 0
    exams_skipped: int = 0
    groups_failed: int = 0
    error: Optional[str] = None
    skipped: bool = False

    @property
    def ok(self) -> bool:
        return not self.skipped and self.error is None and self.groups_failed == 0


class SyncEngine:
    """Push / pull driver between the local store and the remote sheet"""

    def __init__(self, store: LocalStore, remote, resolver: IdentityResolver,
                 ledger: ExamLedger, outbox: Outbox):
        """
        Initialize sync engine.

        Args:
            store: Local store
            remote: RemoteBackend (or any object with async save/search/get_all)
            resolver: Identity resolver bound to the same store
            ledger: Exam ledger bound to the same store
            outbox: Outbox bound to the same store
        """
        self.store = store
        self.remote = remote
        self.resolver = resolver
        self.ledger = ledger
        self.outbox = outbox
        self.logger = logging.getLogger('SyncEngine')

        self._pushing = False
        self._pulling = False

    @property
    def is_pushing(self) -> bool:
        return self._pushing

    @property
    def is_pulling(self) -> bool:
        return self._pulling

    # ========================================================================
    # Push
    # ========================================================================

    async def push(self) -> SyncReport:
        """
        Send every unsynced outbox entry to the remote sheet.

        Entries queued while the run is in progress are picked up before the
        run ends. An entry that fails is tried once per run.

        Returns:
            SyncReport with success and failure counts
        """
        if self._pushing:
            self.logger.info("Push already running; request ignored")
            return SyncReport(skipped=True)

        self._pushing = True
        report = SyncReport()
        attempted = set()
        try:
            while True:
                try:
                    queued = await self.outbox.list_unsynced()
                except DentalRecordsError as e:
                    self.logger.error(f"Cannot read outbox: {e}")
                    report.errors.append(f"Cannot read outbox: {e}")
                    break

                # Re-read until nothing new shows up
                entries = [entry for entry in queued if entry.id not in attempted]
                if not entries:
                    break

                self.logger.info(f"Pushing {len(entries)} pending records...")
                for entry in entries:
                    attempted.add(entry.id)
                    await self._push_entry(entry, report)
        finally:
            self._pushing = False

        if report.success_count or report.fail_count:
            self.logger.info(f"Push finished: {report.summary()}")
        return report

    async def _push_entry(self, entry: PendingChange, report: SyncReport) -> None:
        label = f"{entry.entity_type} {entry.entity_id} (entry {entry.id})"
        try:
            await self.remote.save(entry.payload)
        except (RemoteUnreachable, RemoteRejected, MalformedResponse) as e:
            self.logger.warning(f"  Sync failed for {label}: {e}")
            report.fail_count += 1
            report.errors.append(f"{label}: {e}")
            await self._record_failure(entry, str(e))
            return
        except Exception as e:
            self.logger.error(f"  Sync failed for {label}: {e}", exc_info=True)
            report.fail_count += 1
            report.errors.append(f"{label}: {e}")
            await self._record_failure(entry, str(e))
            return

        try:
            async with self.store.transaction() as tx:
                await self.outbox.mark_synced(entry.id, tx=tx)
                if entry.entity_type == ENTITY_EXAM:
                    await self.ledger.mark_synced(entry.entity_id, tx=tx)
        except DentalRecordsError as e:
            # Remote has it but the ack was not stored; the entry stays queued
            self.logger.error(f"  Remote accepted {label} but the local ack failed: {e}")
            report.fail_count += 1
            report.errors.append(f"{label}: {e}")
            return

        report.success_count += 1
        self.logger.debug(f"  Synced {label} ✓")

    async def _record_failure(self, entry: PendingChange, error: str) -> None:
        try:
            await self.outbox.record_failure(entry.id, error)
        except DentalRecordsError as e:
            self.logger.error(f"  Could not record failure for entry {entry.id}: {e}")

    # ========================================================================
    # Pull
    # ========================================================================

    async def pull(self, name: Optional[str] = None, dob=None, school: Optional[str] = None) -> PullReport:
        """
        Bring remote rows into the local store.

        Without arguments every remote row is fetched (getAll). With a full
        (name, dob, school) triple only that student's rows are fetched
        (search).

        Returns:
            PullReport; network failures are reported in `error`
        """
        if self._pulling:
            self.logger.info("Pull already running; request ignored")
            return PullReport(skipped=True)

        self._pulling = True
        report = PullReport()
        try:
            rows = await self._fetch(name, dob, school, report)
            if rows is None:
                return report

            report.rows_received = len(rows)
            groups = self.group_rows(rows, report)

            for key, group in groups.items():
                try:
                    await self._merge_group(group, report)
                except (DentalRecordsError, ValueError) as e:
                    self.logger.error(f"  Failed to merge remote rows for {key.name}: {e}")
                    report.groups_failed += 1
        finally:
            self._pulling = False

        self.logger.info(
            f"Pull finished: {report.rows_received} rows, {report.students_upserted} students, "
            f"{report.exams_imported} new exams, {report.exams_skipped} already known"
        )
        return report

    async def _fetch(self, name, dob, school, report: PullReport) -> Optional[List[Dict]]:
        targeted = bool(name and dob and school)
        try:
            if targeted:
                return await self.remote.search(name, dob, school)
            return await self.remote.get_all()
        except MalformedResponse as e:
            self.logger.warning(f"Undecodable pull response treated as no data: {e}")
            return []
        except (RemoteUnreachable, RemoteRejected) as e:
            self.logger.warning(f"Pull failed: {e}")
            report.error = str(e)
            return None

    def group_rows(self, rows: List[Dict],
                   report: Optional[PullReport] = None) -> Dict[IdentityKey, List[Tuple[StudentInfo, Optional[VisitInfo]]]]:
        """
        Decode remote rows and group them by natural key, keeping row order.

        Rows without a complete (name, dob, school) are ignored.
        """
        groups: Dict[IdentityKey, List[Tuple[StudentInfo, Optional[VisitInfo]]]] = {}
        for row in rows:
            info = student_from_remote(row)
            key = IdentityKey.of_student(info)
            if not key.is_complete():
                self.logger.debug(f"  Ignoring remote row without full identity: {row}")
                if report is not None:
                    report.rows_ignored += 1
                continue
            groups.setdefault(key, []).append((info, exam_from_remote(row)))
        return groups

    async def _merge_group(self, group: List[Tuple[StudentInfo, Optional[VisitInfo]]],
                           report: PullReport) -> None:
        # Later rows were written later: their values win
        merged = {}
        for info, _ in group:
            merged.update(info.provided())
        student_info = StudentInfo(**merged)

        imported = skipped = 0
        async with self.store.transaction() as tx:
            student = await self.resolver.upsert_from_remote(student_info, tx=tx)
            for _, visit in group:
                if visit is None:
                    continue
                exam_id = await self.ledger.import_remote(student.id, visit, tx=tx)
                if exam_id is None:
                    skipped += 1
                else:
                    imported += 1

        report.students_upserted += 1
        report.exams_imported += imported
        report.exams_skipped += skipped

    # ========================================================================
    # Both directions
    # ========================================================================

    async def sync(self) -> Tuple[SyncReport, PullReport]:
        """Push local changes, then refresh the local cache"""
        push_report = await self.push()
        pull_report = await self.pull()
        return push_report, pull_report
