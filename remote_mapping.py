"""
=============================================================================
Remote Record Mapping
=============================================================================

Translates rows of the remote sheet into StudentInfo / VisitInfo and back.

The remote side is inconsistent about field names: `search` answers with
camelCase keys (completeName, parentName, ...) while `getAll` exports raw
column headers ("Complete Name", "Parent/Guardian", ...). Keys are compared
after lowercasing and stripping everything but letters and digits, so both
spellings land on the same local field. No component past this module and
the identity resolver sees remote field names.

Date: 2026-10-17
Version: 1.0
=============================================================================
"""

import json
import re
from typing import Any, Dict, Optional, Tuple

from models import Exam, Student, StudentInfo, VisitInfo
from normalize import clean_text, format_timestamp, normalize_dob, normalize_timestamp
from tooth_chart import ToothChart

# local field -> accepted remote keys (already normalized)
STUDENT_FIELDS = {
    'name': ('completename', 'name', 'studentname', 'fullname'),
    'dob': ('dob', 'dateofbirth', 'birthdate', 'birthday'),
    'school': ('school', 'schoolname'),
    'sex': ('sex', 'gender'),
    'age': ('age',),
    'address': ('address',),
    'parent_name': ('parentname', 'parentguardian', 'parentguardianname', 'guardian', 'guardianname'),
    'contact_number': ('contactnumber', 'contactno', 'contact', 'phone'),
    'systemic_conditions': ('systemicconditions', 'systemic', 'systemiccondition'),
    'allergies_food': ('allergiesfood', 'foodallergy', 'foodallergies'),
    'allergies_medicines': ('allergiesmedicines', 'medicineallergy', 'medicineallergies', 'drugallergies'),
}

EXAM_FIELDS = {
    'visit_date': ('timestamp', 'visitdate', 'examdate', 'date'),
    'oral_notes': ('oralnotes', 'oralexam', 'oralexamination'),
    'cleaning_notes': ('cleaningnotes',),
    'remarks': ('remarks',),
    'tooth_extraction': ('toothextraction', 'extraction'),
    'tooth_filling': ('toothfilling', 'filling'),
    'tooth_decayed': ('toothdecayed', 'decayed'),
    'tooth_missing': ('toothmissing', 'missing'),
    'tooth_cleaning': ('toothcleaning', 'cleaning'),
    'fluoride': ('fluoride',),
    'dental_consult': ('dentalconsult', 'consult'),
    'severe_cavities': ('severecavities',),
    'tooth_chart': ('toothdata', 'toothchart', 'teeth'),
}

# local field -> key written on save
WIRE_NAMES = {
    'name': 'completeName',
    'dob': 'dob',
    'school': 'school',
    'sex': 'sex',
    'age': 'age',
    'address': 'address',
    'parent_name': 'parentName',
    'contact_number': 'contactNumber',
    'systemic_conditions': 'systemicConditions',
    'allergies_food': 'allergiesFood',
    'allergies_medicines': 'allergiesMedicines',
    'visit_date': 'timestamp',
    'oral_notes': 'oralNotes',
    'cleaning_notes': 'cleaningNotes',
    'remarks': 'remarks',
    'tooth_extraction': 'toothExtraction',
    'tooth_filling': 'toothFilling',
    'tooth_decayed': 'toothDecayed',
    'tooth_missing': 'toothMissing',
    'tooth_cleaning': 'toothCleaning',
    'fluoride': 'fluoride',
    'dental_consult': 'dentalConsult',
    'severe_cavities': 'severeCavities',
    'tooth_chart': 'toothData',
}

RECORD_TYPE_STUDENT = 'student'
RECORD_TYPE_EXAM = 'exam'

_NON_ALNUM = re.compile(r'[^a-z0-9]')


def normalize_header(key: Any) -> str:
    """'Complete Name', 'completeName' and 'complete_name' all become 'completename'"""
    return _NON_ALNUM.sub('', str(key).lower())


def _pick(row: Dict[str, Any], aliases: Tuple[str, ...]) -> Tuple[bool, Any]:
    for alias in aliases:
        if alias in row:
            return True, row[alias]
    return False, None


def _text(value: Any) -> str:
    return clean_text(value)


def student_from_remote(record: Dict[str, Any]) -> StudentInfo:
    """
    Decode the student part of a remote row.

    Args:
        record: Row dictionary with remote keys

    Returns:
        StudentInfo; attributes the row does not carry stay None
    """
    row = {normalize_header(k): v for k, v in record.items()}
    values = {}
    for field_name, aliases in STUDENT_FIELDS.items():
        found, value = _pick(row, aliases)
        if found:
            values[field_name] = value

    return StudentInfo(
        name=_text(values.pop('name', '')),
        dob=normalize_dob(values.pop('dob', '')),
        school=_text(values.pop('school', '')),
        **{k: _text(v) for k, v in values.items()},
    )


def exam_from_remote(record: Dict[str, Any]) -> Optional[VisitInfo]:
    """
    Decode the visit part of a remote row.

    Args:
        record: Row dictionary with remote keys

    Returns:
        VisitInfo, or None for student-only rows and rows without a
        readable visit timestamp
    """
    row = {normalize_header(k): v for k, v in record.items()}
    if normalize_header(row.get('recordtype', '')) == RECORD_TYPE_STUDENT:
        return None
    found, raw_date = _pick(row, EXAM_FIELDS['visit_date'])
    visit_date = normalize_timestamp(raw_date) if found else None
    if visit_date is None:
        return None

    values = {'visit_date': visit_date}
    for field_name, aliases in EXAM_FIELDS.items():
        if field_name in ('visit_date', 'tooth_chart'):
            continue
        found, value = _pick(row, aliases)
        if found:
            values[field_name] = _text(value)

    found, chart = _pick(row, EXAM_FIELDS['tooth_chart'])
    if found:
        values['tooth_chart'] = decode_chart(chart)

    return VisitInfo(**values)


def decode_chart(value: Any) -> Optional[Dict[str, str]]:
    """
    Read a tooth chart snapshot sent as a dict or as JSON text.

    Returns:
        Full 52-tooth snapshot, or None when the value is empty or unreadable
    """
    if isinstance(value, str):
        if not value.strip():
            return None
        try:
            value = json.loads(value)
        except ValueError:
            return None
    if not isinstance(value, dict):
        return None
    return ToothChart.from_dict(value).to_dict()


def student_to_wire(student: Student) -> Dict[str, Any]:
    """Remote save record for a student"""
    record = {'recordType': RECORD_TYPE_STUDENT}
    for field_name in STUDENT_FIELDS:
        value = getattr(student, field_name)
        record[WIRE_NAMES[field_name]] = value if value is not None else ''
    return record


def exam_to_wire(student: Student, exam: Exam) -> Dict[str, Any]:
    """
    Remote save record for one visit: student columns plus exam columns,
    matching one row of the sheet.
    """
    record = student_to_wire(student)
    record['recordType'] = RECORD_TYPE_EXAM
    for field_name in EXAM_FIELDS:
        value = getattr(exam, field_name)
        if field_name == 'visit_date':
            value = format_timestamp(value)
        elif field_name == 'tooth_chart':
            value = value or {}
        elif value is None:
            value = ''
        record[WIRE_NAMES[field_name]] = value
    return record
