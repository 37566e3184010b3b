"""
=============================================================================
Record Service
=============================================================================

Operations behind the screening form: register a student, submit an exam,
search a student's history, sync on demand. Every operation resolves to an
ActionResult with a message for the status line; failures never propagate
to the caller.

Flow of a submitted exam:
    form -> identity resolver -> exam ledger + outbox (one transaction)
         -> best-effort push when online

Date: 2026-10-17
Version: 1.0
=============================================================================
"""

import logging
from dataclasses import dataclass, field
from typing import Any, List, Optional

from context import ClinicContext
from errors import DentalRecordsError
from models import Exam, Student, StudentInfo, VisitInfo
from outbox import ENTITY_EXAM, ENTITY_STUDENT
from remote_mapping import exam_to_wire, student_to_wire
from sync_engine import SyncReport


@dataclass
class ActionResult:
    """Outcome of one user action"""
    ok: bool
    message: str
    student: Optional[Student] = None
    exams: List[Exam] = field(default_factory=list)
    exam_id: Optional[int] = None
    sync: Optional[SyncReport] = None


class RecordService:
    """User-facing record operations on top of a ClinicContext"""

    def __init__(self, ctx: ClinicContext):
        self.ctx = ctx
        self.logger = logging.getLogger('RecordService')

    async def register_student(self, info: StudentInfo) -> ActionResult:
        """
        Save a student entered on the device and queue it for the remote sheet.

        An existing student with the same name, date of birth and school is
        updated instead of duplicated.
        """
        try:
            async with self.ctx.store.transaction() as tx:
                student, created = await self.ctx.resolver.resolve_or_create(info, tx=tx)
                await self.ctx.outbox.enqueue(ENTITY_STUDENT, student.id, student_to_wire(student), tx=tx)
        except ValueError:
            return ActionResult(False, "Please fill in name, date of birth and school")
        except DentalRecordsError as e:
            self.logger.error(f"Could not save student: {e}")
            return ActionResult(False, f"Could not save student: {e}")

        self.ctx.current_student_id = student.id
        report = await self._push_if_online()
        message = "Student registered" if created else "Student details updated"
        return ActionResult(True, self._with_sync_note(message, report), student=student, sync=report)

    async def submit_exam(self, visit: VisitInfo, student_id: Optional[int] = None) -> ActionResult:
        """
        Record an exam for a student and queue it for the remote sheet.

        Args:
            visit: Exam values (a tooth chart, if present, drives the tooth lists)
            student_id: Student to attach to; defaults to the current student
        """
        student_id = student_id or self.ctx.current_student_id
        if student_id is None:
            return ActionResult(False, "Search for or register a student first")

        try:
            async with self.ctx.store.transaction() as tx:
                student = await tx.get('students', student_id)
                if student is None:
                    return ActionResult(False, "Student not found")
                exam_id = await self.ctx.ledger.append(student_id, visit, tx=tx)
                exam = await tx.get('exams', exam_id)
                await self.ctx.outbox.enqueue(ENTITY_EXAM, exam_id, exam_to_wire(student, exam), tx=tx)
        except DentalRecordsError as e:
            self.logger.error(f"Could not save exam: {e}")
            return ActionResult(False, f"Could not save exam: {e}")

        report = await self._push_if_online()
        exam = await self._reload_exam(exam_id)
        return ActionResult(
            True,
            self._with_sync_note("Record saved", report),
            student=student,
            exams=[exam] if exam else [],
            exam_id=exam_id,
            sync=report,
        )

    async def search_student(self, name: str, dob: Any, school: str) -> ActionResult:
        """
        Find a student and their visit history.

        Online, the student's remote rows are pulled first so the history is
        current; offline, only the local cache is searched.
        """
        if not (name and str(name).strip() and dob and school and str(school).strip()):
            return ActionResult(False, "Please fill in all search fields")

        if self.ctx.online:
            report = await self.ctx.engine.pull(name, dob, school)
            if report.error:
                self.logger.warning(f"Remote search failed, using local records: {report.error}")

        try:
            student = await self.ctx.resolver.resolve_or_null(name, dob, school)
            if student is None:
                where = "" if self.ctx.online else " offline"
                return ActionResult(False, f"Student not found{where}")
            exams = await self.ctx.ledger.list_for_student(student.id)
        except DentalRecordsError as e:
            self.logger.error(f"Search error: {e}")
            return ActionResult(False, f"Error: {e}")

        self.ctx.current_student_id = student.id
        return ActionResult(True, "Student found", student=student, exams=exams)

    async def pending_count(self) -> int:
        try:
            return await self.ctx.outbox.count_unsynced()
        except DentalRecordsError as e:
            self.logger.error(f"Cannot count pending records: {e}")
            return 0

    async def sync_now(self) -> ActionResult:
        """Manual sync button"""
        if not self.ctx.online:
            return ActionResult(False, "You are offline. Cannot sync.")
        report = await self.ctx.engine.push()
        return ActionResult(report.fail_count == 0 and not report.errors, report.summary(), sync=report)

    def clear_current(self) -> None:
        self.ctx.current_student_id = None

    async def _push_if_online(self) -> Optional[SyncReport]:
        if not self.ctx.online:
            return None
        return await self.ctx.engine.push()

    async def _reload_exam(self, exam_id: int) -> Optional[Exam]:
        try:
            return await self.ctx.ledger.get(exam_id)
        except DentalRecordsError as e:
            self.logger.error(f"Cannot reload exam {exam_id}: {e}")
            return None

    @staticmethod
    def _with_sync_note(message: str, report: Optional[SyncReport]) -> str:
        if report is None:
            return f"{message} offline; it will sync when you are back online"
        if report.skipped:
            return f"{message}; sync in progress"
        if report.fail_count:
            return f"{message} locally; {report.summary()}"
        return f"{message} and synced"
