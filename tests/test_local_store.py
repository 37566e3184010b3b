"""
Tests for the local store: shared initialization, CRUD, indexes and the
version-bump rebuild that keeps unsynced records.
"""

import asyncio
import json
import os
from datetime import datetime

import pytest

from errors import StorageUnavailable, TransactionFailed
from export_utils import load_upgrade_backup
from models import Exam, PendingChange, Student


def _student(name='Juan Dela Cruz', dob='05/01/2015', school='Rizal ES'):
    return Student(
        name=name, dob=dob, school=school,
        name_key=name.casefold(), school_key=school.casefold(),
    )


def test_concurrent_open_initializes_once(make_store):
    store = make_store()

    async def scenario():
        try:
            results = await asyncio.gather(store.open(), store.open(), store.open())
            await store.open()
            return results
        finally:
            await store.close()

    results = asyncio.run(scenario())
    assert all(r is store for r in results)
    assert store.initializations == 1


def test_put_inserts_then_upserts(make_store):
    store = make_store()

    async def scenario():
        try:
            student = _student()
            student_id = await store.put('students', student)

            stored = await store.get('students', student_id)
            stored.contact_number = '0917 000 0000'
            same_id = await store.put('students', stored)

            reloaded = await store.get('students', student_id)
            return student_id, same_id, reloaded, await store.count('students')
        finally:
            await store.close()

    student_id, same_id, reloaded, count = asyncio.run(scenario())
    assert student_id is not None
    assert same_id == student_id
    assert reloaded.contact_number == '0917 000 0000'
    assert count == 1


def test_index_lookups(make_store):
    store = make_store()

    async def scenario():
        try:
            await store.put('students', _student())
            await store.put('students', _student(name='Maria Santos'))
            by_name = await store.get_all_by_index('students', 'name', 'JUAN  dela cruz')
            by_school = await store.get_all_by_index('students', 'school', 'rizal es')
            by_dob = await store.get_all_by_index('students', 'dob', '2015-01-05')
            return by_name, by_school, by_dob
        finally:
            await store.close()

    by_name, by_school, by_dob = asyncio.run(scenario())
    assert [s.name for s in by_name] == ['Juan Dela Cruz']
    assert len(by_school) == 2
    assert len(by_dob) == 2


def test_delete_and_missing_records(make_store):
    store = make_store()

    async def scenario():
        try:
            student_id = await store.put('students', _student())
            removed = await store.delete('students', student_id)
            removed_again = await store.delete('students', student_id)
            return removed, removed_again, await store.get('students', student_id)
        finally:
            await store.close()

    removed, removed_again, missing = asyncio.run(scenario())
    assert removed is True
    assert removed_again is False
    assert missing is None


def test_unknown_collection_and_index_fail(make_store):
    store = make_store()

    async def scenario():
        try:
            with pytest.raises(TransactionFailed):
                await store.get_all('visits')
            with pytest.raises(TransactionFailed):
                await store.get_all_by_index('students', 'age', '8')
            with pytest.raises(TransactionFailed):
                await store.put('exams', _student())
        finally:
            await store.close()

    asyncio.run(scenario())


def test_duplicate_natural_key_is_refused(make_store):
    store = make_store()

    async def scenario():
        try:
            await store.put('students', _student())
            with pytest.raises(TransactionFailed):
                await store.put('students', _student())
            return await store.count('students')
        finally:
            await store.close()

    assert asyncio.run(scenario()) == 1


def test_failed_transaction_rolls_back(make_store):
    store = make_store()

    async def scenario():
        try:
            with pytest.raises(TransactionFailed):
                async with store.transaction() as tx:
                    await tx.put('students', _student(name='Ana Reyes'))
                    await tx.put('students', _student(name='Ana Reyes'))
            return await store.count('students')
        finally:
            await store.close()

    assert asyncio.run(scenario()) == 0


def test_unopenable_path_raises_storage_unavailable(tmp_path):
    from local_store import LocalStore

    # A directory cannot be opened as a database file
    blocked = tmp_path / 'blocked.db'
    blocked.mkdir()
    store = LocalStore(str(blocked), 'DentalOfflineDB', 1)

    async def scenario():
        with pytest.raises(StorageUnavailable):
            await store.open()
        # A later call retries instead of reusing the failed attempt
        with pytest.raises(StorageUnavailable):
            await store.open()

    asyncio.run(scenario())
    assert not store.is_open


def test_same_version_keeps_data(make_store):
    async def scenario():
        first = make_store(version=1)
        try:
            await first.put('students', _student())
        finally:
            await first.close()

        second = make_store(version=1)
        try:
            return await second.count('students')
        finally:
            await second.close()

    assert asyncio.run(scenario()) == 1


def test_version_bump_keeps_unsynced_records(make_store, db_path):
    async def scenario():
        old = make_store(version=1)
        try:
            async with old.transaction() as tx:
                juan_id = await tx.put('students', _student())
                await tx.put('students', _student(name='Maria Santos'))
                exam_id = await tx.put('exams', Exam(
                    student_id=juan_id, visit_date=datetime(2024, 3, 1, 8, 30), synced=False,
                    tooth_chart={'18': 'X'}, tooth_extraction='18',
                ))
                pending_id = await tx.put('pending', PendingChange(
                    entity_type='exam', entity_id=exam_id, payload={'completeName': 'Juan Dela Cruz'},
                    timestamp=datetime(2024, 3, 1, 8, 31), synced=False,
                ))
                await tx.put('pending', PendingChange(
                    entity_type='student', entity_id=juan_id, payload={}, synced=True,
                ))
        finally:
            await old.close()

        new = make_store(version=2)
        try:
            students = await new.get_all('students')
            exams = await new.get_all('exams')
            pending = await new.get_all('pending')
            return juan_id, exam_id, pending_id, students, exams, pending, new.last_backup
        finally:
            await new.close()

    juan_id, exam_id, pending_id, students, exams, pending, backup = asyncio.run(scenario())

    # Only what the unsynced entry needs survives, under the same ids
    assert [s.id for s in students] == [juan_id]
    assert [e.id for e in exams] == [exam_id]
    assert exams[0].tooth_chart == {'18': 'X'}
    assert exams[0].visit_date == datetime(2024, 3, 1, 8, 30)
    assert [p.id for p in pending] == [pending_id]
    assert pending[0].payload == {'completeName': 'Juan Dela Cruz'}

    assert backup is not None and os.path.exists(backup)
    exported = load_upgrade_backup(backup)
    assert exported['from_version'] == '1'
    assert exported['to_version'] == 2
    assert len(exported['tables']['pending']) == 1


def test_version_bump_without_pending_starts_empty(make_store):
    async def scenario():
        old = make_store(version=1)
        try:
            await old.put('students', _student())
        finally:
            await old.close()

        new = make_store(version=3)
        try:
            return await new.count('students'), new.last_backup
        finally:
            await new.close()

    count, backup = asyncio.run(scenario())
    assert count == 0
    assert backup is None


def test_backup_file_is_json(tmp_path):
    from export_utils import write_upgrade_backup

    path = write_upgrade_backup(
        {'pending': [{'id': 1, 'timestamp': datetime(2024, 1, 1)}]}, str(tmp_path / 'b'), '1', 2
    )
    with open(path) as f:
        data = json.load(f)
    assert data['tables']['pending'][0]['timestamp'].startswith('2024-01-01')
