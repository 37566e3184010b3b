"""
=============================================================================
Export Utilities for Offline Dental Field Records
=============================================================================

Utilities to export local records to JSON:
- Pre-upgrade backup of the unsynced outbox and the rows it references,
  and the matching restore step used after a schema rebuild
- Full student history export for review on another machine

Date: 2026-10-17
Version: 1.0
=============================================================================
"""

import json
import logging
import os
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from errors import StorageUnavailable
from normalize import utcnow

logger = logging.getLogger('ExportUtils')

# Restore order follows the foreign keys
RESTORE_ORDER = ('students', 'exams', 'pending')


def collect_unsynced_rows(conn, metadata) -> Dict[str, List[Dict[str, Any]]]:
    """
    Read unsynced outbox entries and every row they depend on.

    Args:
        conn: Synchronous SQLAlchemy connection inside the upgrade transaction
        metadata: MetaData reflected from the existing (old) schema

    Returns:
        Dictionary of table name -> list of row dictionaries

    Raises:
        StorageUnavailable: If the old outbox cannot be read; the caller must
                            not drop anything in that case
    """
    pending = metadata.tables.get('pending')
    if pending is None:
        return {}
    if 'synced' not in pending.c:
        raise StorageUnavailable("Existing outbox has no synced column; refusing to rebuild store")

    try:
        pending_rows = [
            dict(row._mapping)
            for row in conn.execute(select(pending).where(pending.c.synced.is_(False)))
        ]

        exam_ids = {r['entity_id'] for r in pending_rows if r.get('entity_type') == 'exam'}
        student_ids = {r['entity_id'] for r in pending_rows if r.get('entity_type') == 'student'}

        exam_rows = []
        exams = metadata.tables.get('exams')
        if exams is not None and exam_ids:
            exam_rows = [
                dict(row._mapping)
                for row in conn.execute(select(exams).where(exams.c.id.in_(sorted(exam_ids))))
            ]
            student_ids.update(r['student_id'] for r in exam_rows)

        student_rows = []
        students = metadata.tables.get('students')
        if students is not None and student_ids:
            student_rows = [
                dict(row._mapping)
                for row in conn.execute(select(students).where(students.c.id.in_(sorted(student_ids))))
            ]
    except (SQLAlchemyError, KeyError) as e:
        raise StorageUnavailable(f"Cannot read unsynced records before upgrade: {e}") from e

    return {
        'students': student_rows,
        'exams': exam_rows,
        'pending': pending_rows,
    }


def restore_rows(conn, metadata, preserved: Dict[str, List[Dict[str, Any]]]) -> int:
    """
    Insert preserved rows into freshly created tables, keeping their ids.

    Columns that no longer exist in the new schema are dropped from each row.

    Args:
        conn: Synchronous SQLAlchemy connection
        metadata: MetaData of the new schema
        preserved: Output of collect_unsynced_rows

    Returns:
        Number of rows inserted
    """
    restored = 0
    for table_name in RESTORE_ORDER:
        rows = preserved.get(table_name) or []
        if not rows:
            continue
        table = metadata.tables[table_name]
        allowed = set(table.c.keys())
        cleaned = [{k: v for k, v in row.items() if k in allowed} for row in rows]
        conn.execute(table.insert(), cleaned)
        restored += len(cleaned)
        logger.debug(f"Restored {len(cleaned)} rows into {table_name}")
    return restored


def write_upgrade_backup(preserved: Dict[str, List[Dict[str, Any]]], backup_dir: str,
                         from_version: Optional[str], to_version: int) -> str:
    """
    Write preserved rows to a JSON file before the old tables are dropped.

    Args:
        preserved: Output of collect_unsynced_rows
        backup_dir: Directory for backup files (created if missing)
        from_version: Schema version found on disk
        to_version: Schema version being installed

    Returns:
        Path of the backup file
    """
    os.makedirs(backup_dir, exist_ok=True)
    stamp = utcnow().strftime('%Y%m%d_%H%M%S')
    path = os.path.join(backup_dir, f"unsynced_v{from_version or 'unknown'}_to_v{to_version}_{stamp}.json")

    export_data = {
        'from_version': from_version,
        'to_version': to_version,
        'exported_at': utcnow().isoformat(),
        'tables': preserved,
    }

    with open(path, 'w') as f:
        json.dump(export_data, f, indent=2, default=str)

    return path


def load_upgrade_backup(path: str) -> Dict[str, Any]:
    """Read a backup written by write_upgrade_backup"""
    with open(path, 'r') as f:
        return json.load(f)


async def export_students_json(store, output_file: str = 'students.json') -> int:
    """
    Export every student with their visit history to a JSON file.

    Args:
        store: Open LocalStore
        output_file: Output JSON file path

    Returns:
        Number of students exported
    """
    async with store.transaction() as tx:
        students = await tx.get_all('students')
        exams = await tx.get_all('exams')

    history: Dict[int, List] = {}
    for exam in exams:
        history.setdefault(exam.student_id, []).append(exam)

    export_data = []
    for student in students:
        visits = sorted(history.get(student.id, []), key=lambda e: (e.visit_date, e.id), reverse=True)
        export_data.append({
            'id': student.id,
            'name': student.name,
            'dob': student.dob,
            'school': student.school,
            'sex': student.sex,
            'age': student.age,
            'address': student.address,
            'parent_name': student.parent_name,
            'contact_number': student.contact_number,
            'systemic_conditions': student.systemic_conditions,
            'allergies_food': student.allergies_food,
            'allergies_medicines': student.allergies_medicines,
            'updated_at': student.updated_at.isoformat() if student.updated_at else None,
            'exams': [
                {
                    'id': exam.id,
                    'visit_date': exam.visit_date.isoformat(),
                    'tooth_extraction': exam.tooth_extraction,
                    'tooth_filling': exam.tooth_filling,
                    'tooth_decayed': exam.tooth_decayed,
                    'tooth_missing': exam.tooth_missing,
                    'oral_notes': exam.oral_notes,
                    'cleaning_notes': exam.cleaning_notes,
                    'remarks': exam.remarks,
                    'tooth_chart': exam.tooth_chart,
                    'synced': exam.synced,
                }
                for exam in visits
            ],
        })

    # Sort by school then name
    export_data.sort(key=lambda x: (x['school'].casefold(), x['name'].casefold()))

    with open(output_file, 'w') as f:
        json.dump(export_data, f, indent=2)

    logger.info(f"Exported {len(export_data)} students to {output_file}")
    return len(export_data)
