"""
=============================================================================
Student Identity Resolver
=============================================================================

The remote sheet and the local store share no primary key, so a student is
identified by the natural key (name, date of birth, school):

- name and school compare case-insensitively with whitespace collapsed
- date of birth compares in canonical DD/MM/YYYY form

Every path that inserts a student goes through this module, which keeps the
one-record-per-key rule (also backed by a unique constraint in the store).

Known limitation: two children with the same name, birth date and school
(twins registered under one name) collapse into one identity.

Date: 2026-10-17
Version: 1.0
=============================================================================
"""

import logging
from typing import Any, Dict, NamedTuple, Optional, Tuple, Union

from local_store import LocalStore, StoreTransaction
from models import Student, StudentInfo
from normalize import clean_text, normalize_dob, normalize_key, utcnow
from remote_mapping import student_from_remote


class IdentityKey(NamedTuple):
    """Normalized composite key of a student"""
    name: str
    dob: str
    school: str

    @classmethod
    def of(cls, name: Any, dob: Any, school: Any) -> 'IdentityKey':
        return cls(normalize_key(name), normalize_dob(dob), normalize_key(school))

    @classmethod
    def of_student(cls, student: Union[Student, StudentInfo]) -> 'IdentityKey':
        return cls.of(student.name, student.dob, student.school)

    def is_complete(self) -> bool:
        return bool(self.name and self.dob and self.school)


class IdentityResolver:
    """Finds, creates and updates students by their natural key"""

    def __init__(self, store: LocalStore):
        self.store = store
        self.logger = logging.getLogger('IdentityResolver')

    async def resolve_or_null(self, name: Any, dob: Any, school: Any,
                              tx: Optional[StoreTransaction] = None) -> Optional[Student]:
        """
        Find the local student for a natural key.

        Args:
            name: Student name in any case/spacing
            dob: Date of birth as date, ISO string or DD/MM/YYYY
            school: School name in any case/spacing
            tx: Transaction to run in (a new one is opened if omitted)

        Returns:
            Matching Student or None
        """
        key = IdentityKey.of(name, dob, school)
        if not key.is_complete():
            return None

        async with self.store.use(tx) as tx:
            candidates = await tx.get_all_by_index('students', 'name', key.name)

        for student in candidates:
            if student.dob == key.dob and student.school_key == key.school:
                return student
        return None

    async def resolve_or_create(self, info: StudentInfo,
                                tx: Optional[StoreTransaction] = None) -> Tuple[Student, bool]:
        """
        Local entry path: update the matching student or insert a new one.

        Args:
            info: Values entered on the device
            tx: Transaction to run in

        Returns:
            Tuple of (stored Student, True if newly created)

        Raises:
            ValueError: If name, date of birth or school is missing
        """
        async with self.store.use(tx) as tx:
            return await self._upsert(info, tx)

    async def upsert_from_remote(self, remote_record: Union[Dict[str, Any], StudentInfo],
                                 tx: Optional[StoreTransaction] = None) -> Student:
        """
        Merge a remote student into the local store.

        The remote copy wins: every field it carries overwrites the local
        value, while the local surrogate id is kept.

        Args:
            remote_record: Raw remote row, or a StudentInfo already decoded
                           by remote_mapping
            tx: Transaction to run in

        Returns:
            The stored Student
        """
        if isinstance(remote_record, StudentInfo):
            info = remote_record
        else:
            info = student_from_remote(remote_record)

        async with self.store.use(tx) as tx:
            student, created = await self._upsert(info, tx)

        self.logger.debug(f"{'Imported' if created else 'Updated'} student from remote: {student}")
        return student

    async def _upsert(self, info: StudentInfo, tx: StoreTransaction) -> Tuple[Student, bool]:
        key = IdentityKey.of_student(info)
        if not key.is_complete():
            raise ValueError(f"Student needs name, date of birth and school: {info}")

        student = await self.resolve_or_null(info.name, info.dob, info.school, tx=tx)
        created = student is None
        if created:
            student = Student(created_at=utcnow())

        values = info.provided()
        values['name'] = clean_text(info.name)
        values['dob'] = key.dob
        values['school'] = clean_text(info.school)
        for field_name, value in values.items():
            setattr(student, field_name, value)
        student.name_key = key.name
        student.school_key = key.school
        student.updated_at = utcnow()

        await tx.put('students', student)
        return student, created
