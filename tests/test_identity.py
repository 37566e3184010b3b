"""
Tests for natural-key student matching and remote upserts.
"""

import asyncio
from datetime import date

import pytest

from identity import IdentityKey
from models import StudentInfo


def test_key_normalizes_every_part():
    assert IdentityKey.of(' Juan  Dela Cruz', date(2015, 1, 5), 'RIZAL ES') == \
        IdentityKey.of('juan dela cruz', '05/01/2015', 'Rizal ES')
    assert not IdentityKey.of('Juan', '', 'Rizal ES').is_complete()


def test_local_student_matches_remote_spelling(make_components):
    c = make_components()

    async def scenario():
        try:
            student, created = await c.resolver.resolve_or_create(
                StudentInfo(name='Juan Dela Cruz', dob='05/01/2015', school='Rizal ES')
            )
            found = await c.resolver.resolve_or_null('juan dela cruz', date(2015, 1, 5), 'rizal es')
            other = await c.resolver.resolve_or_null('Juan Dela Cruz', '06/01/2015', 'Rizal ES')
            return student, created, found, other
        finally:
            await c.store.close()

    student, created, found, other = asyncio.run(scenario())
    assert created is True
    assert found is not None and found.id == student.id
    assert other is None


def test_resolve_or_create_updates_existing(make_components):
    c = make_components()

    async def scenario():
        try:
            first, _ = await c.resolver.resolve_or_create(
                StudentInfo(name='Ana Reyes', dob='2014-07-12', school='Mabini ES', sex='F')
            )
            second, created = await c.resolver.resolve_or_create(
                StudentInfo(name='ANA REYES', dob='12/07/2014', school='mabini es', age='9')
            )
            return first, second, created, await c.store.count('students')
        finally:
            await c.store.close()

    first, second, created, count = asyncio.run(scenario())
    assert created is False
    assert second.id == first.id
    assert second.sex == 'F'
    assert second.age == '9'
    assert count == 1


def test_incomplete_key_is_refused(make_components):
    c = make_components()

    async def scenario():
        try:
            with pytest.raises(ValueError):
                await c.resolver.resolve_or_create(StudentInfo(name='Ana Reyes', dob='', school='Mabini ES'))
            return await c.store.count('students')
        finally:
            await c.store.close()

    assert asyncio.run(scenario()) == 0


def test_remote_raw_headers_update_local_record(make_components):
    c = make_components()

    async def scenario():
        try:
            local, _ = await c.resolver.resolve_or_create(StudentInfo(
                name='Juan Dela Cruz', dob='05/01/2015', school='Rizal ES',
                address='Purok 1', contact_number='0917 111 1111',
            ))
            updated = await c.resolver.upsert_from_remote({
                'Complete Name': 'juan dela cruz',
                'Date of Birth': '2015-01-05T00:00:00.000Z',
                'School': 'rizal es',
                'Parent/Guardian': 'Maria Dela Cruz',
                'Contact Number': '0917 222 2222',
            })
            return local, updated, await c.store.count('students')
        finally:
            await c.store.close()

    local, updated, count = asyncio.run(scenario())
    assert count == 1
    assert updated.id == local.id
    assert updated.parent_name == 'Maria Dela Cruz'
    assert updated.contact_number == '0917 222 2222'
    # Fields the remote row does not carry keep their local value
    assert updated.address == 'Purok 1'
