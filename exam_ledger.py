"""
=============================================================================
Exam / Visit Ledger
=============================================================================

Append-only dental visit history per student. Exams are never deleted and,
once acknowledged by the remote sheet, only their synced flag changes.

Date: 2026-10-17
Version: 1.0
=============================================================================
"""

import logging
from typing import Dict, List, Optional, Union

from local_store import LocalStore, StoreTransaction
from models import Exam, VisitInfo
from normalize import normalize_timestamp, utcnow
from tooth_chart import ToothChart


class ExamLedger:
    """Visit history stored in the exams collection"""

    def __init__(self, store: LocalStore):
        self.store = store
        self.logger = logging.getLogger('ExamLedger')

    async def append(self, student_id: int, exam_payload: Union[VisitInfo, Dict],
                     tx: Optional[StoreTransaction] = None, synced: bool = False) -> int:
        """
        Record a new visit for a student.

        When a tooth chart is supplied the extraction, filling, decayed and
        missing lists are recomputed from it.

        Args:
            student_id: Local id of the owning student
            exam_payload: Visit values (VisitInfo or dict of exam fields)
            tx: Transaction to run in
            synced: Store the visit as already acknowledged (remote imports)

        Returns:
            Local id of the new exam
        """
        exam = self._build(student_id, exam_payload, synced)
        async with self.store.use(tx) as tx:
            exam_id = await tx.put('exams', exam)

        self.logger.debug(f"Appended exam {exam_id} for student {student_id} (synced={synced})")
        return exam_id

    async def list_for_student(self, student_id: int,
                               tx: Optional[StoreTransaction] = None) -> List[Exam]:
        """
        Visit history of one student, newest first.

        Ties on the visit timestamp are broken by id, latest insert first.
        """
        async with self.store.use(tx) as tx:
            exams = await tx.get_all_by_index('exams', 'student_id', student_id)
        return sorted(exams, key=lambda e: (e.visit_date, e.id), reverse=True)

    async def get(self, exam_id: int, tx: Optional[StoreTransaction] = None) -> Optional[Exam]:
        async with self.store.use(tx) as tx:
            return await tx.get('exams', exam_id)

    async def mark_synced(self, exam_id: int, tx: Optional[StoreTransaction] = None) -> bool:
        """
        Flag an exam as acknowledged by the remote sheet.

        Returns:
            True if the exam exists, False otherwise
        """
        async with self.store.use(tx) as tx:
            exam = await tx.get('exams', exam_id)
            if exam is None:
                self.logger.warning(f"Cannot mark missing exam {exam_id} as synced")
                return False
            if not exam.synced:
                exam.synced = True
                await tx.put('exams', exam)
        return True

    async def import_remote(self, student_id: int, visit: VisitInfo,
                            tx: Optional[StoreTransaction] = None) -> Optional[int]:
        """
        Add a visit pulled from the remote sheet unless it is already known.

        A visit is known when the same student already has an exam with the
        same visit timestamp, which makes repeated pulls idempotent.

        Returns:
            New exam id, or None if the visit was skipped
        """
        visit_date = normalize_timestamp(visit.visit_date)
        if visit_date is None:
            return None

        async with self.store.use(tx) as tx:
            existing = await tx.get_all_by_index('exams', 'student_id', student_id)
            if any(exam.visit_date == visit_date for exam in existing):
                return None
            return await self.append(student_id, visit, tx=tx, synced=True)

    def _build(self, student_id: int, payload: Union[VisitInfo, Dict], synced: bool) -> Exam:
        values = payload.provided() if isinstance(payload, VisitInfo) else dict(payload)

        visit_date = normalize_timestamp(values.get('visit_date')) or normalize_timestamp(utcnow())
        values['visit_date'] = visit_date

        chart = values.get('tooth_chart')
        if isinstance(chart, ToothChart):
            chart = chart.to_dict()
        if chart:
            chart = ToothChart.from_dict(chart)
            values['tooth_chart'] = chart.to_dict()
            values.update(chart.projections())

        return Exam(
            student_id=student_id,
            synced=synced,
            created_at=utcnow(),
            **values,
        )
