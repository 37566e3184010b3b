"""
=============================================================================
Database Models for Offline Dental Field Records
=============================================================================

SQLAlchemy models for the local store kept on the screening device.

Tables:
- students: One row per child, identified by (name, date of birth, school)
- exams: Dental visit history, one row per submitted exam
- pending: Outbox of saves not yet acknowledged by the remote sheet
- store_meta: Store namespace and schema version

Plus the plain record types (StudentInfo, VisitInfo) that carry form input
and decoded remote rows into the store.

Date: 2026-10-17
Version: 1.0
=============================================================================
"""

from dataclasses import dataclass, fields
from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy import (
    Boolean, Column, DateTime, ForeignKey, Index, Integer, JSON, String, Text, UniqueConstraint,
)
from sqlalchemy.orm import declarative_base

from normalize import utcnow

Base = declarative_base()


class Student(Base):
    """Student basic and medical information"""
    __tablename__ = 'students'

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(200), nullable=False)  # As entered / as stored remotely
    dob = Column(String(10), nullable=False, index=True)  # Canonical DD/MM/YYYY
    school = Column(String(200), nullable=False)
    name_key = Column(String(200), nullable=False, index=True)  # casefolded name
    school_key = Column(String(200), nullable=False, index=True)  # casefolded school
    sex = Column(String(10))
    age = Column(String(10))
    address = Column(String(300))
    parent_name = Column(String(200))
    contact_number = Column(String(50))
    systemic_conditions = Column(Text)
    allergies_food = Column(Text)
    allergies_medicines = Column(Text)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow)

    # One live record per natural key
    __table_args__ = (
        UniqueConstraint('name_key', 'dob', 'school_key', name='unique_student_identity'),
    )

    def __repr__(self):
        return f"<Student(id={self.id}, name={self.name}, dob={self.dob}, school={self.school})>"


class Exam(Base):
    """One dental visit for a student"""
    __tablename__ = 'exams'

    id = Column(Integer, primary_key=True, autoincrement=True)
    student_id = Column(Integer, ForeignKey('students.id'), nullable=False, index=True)
    visit_date = Column(DateTime, nullable=False, index=True)  # UTC, second precision
    oral_notes = Column(Text)
    cleaning_notes = Column(Text)
    remarks = Column(Text)
    tooth_extraction = Column(Text)  # "11, 18"
    tooth_filling = Column(Text)
    tooth_decayed = Column(Text)
    tooth_missing = Column(Text)
    tooth_cleaning = Column(String(100))
    fluoride = Column(String(100))
    dental_consult = Column(String(100))
    severe_cavities = Column(String(100))
    tooth_chart = Column(JSON)  # {"18": "N", ...}
    synced = Column(Boolean, nullable=False, default=False, index=True)
    created_at = Column(DateTime, default=utcnow)

    def __repr__(self):
        return f"<Exam(id={self.id}, student_id={self.student_id}, visit={self.visit_date}, synced={self.synced})>"


class PendingChange(Base):
    """Outbox entry: a student or exam save waiting for remote acknowledgement"""
    __tablename__ = 'pending'

    id = Column(Integer, primary_key=True, autoincrement=True)
    entity_type = Column(String(20), nullable=False)  # "student" or "exam"
    entity_id = Column(Integer, nullable=False)
    payload = Column(JSON, nullable=False)  # Wire record sent with action=save
    timestamp = Column(DateTime, nullable=False, default=utcnow, index=True)
    synced = Column(Boolean, nullable=False, default=False, index=True)
    synced_at = Column(DateTime)
    attempts = Column(Integer, nullable=False, default=0)
    last_error = Column(Text)

    __table_args__ = (
        Index('ix_pending_entity', 'entity_type', 'entity_id'),
    )

    def __repr__(self):
        return f"<PendingChange(id={self.id}, {self.entity_type}={self.entity_id}, synced={self.synced})>"


class StoreMeta(Base):
    """Key/value metadata about the local store"""
    __tablename__ = 'store_meta'

    key = Column(String(50), primary_key=True)
    value = Column(String(200))


# ============================================================================
# Record types passed between the form, the remote boundary and the store
# ============================================================================

@dataclass
class StudentInfo:
    """
    Student attributes as entered or as decoded from a remote row.

    None means "not provided", so an update only touches the fields the
    source actually carried.
    """
    name: str
    dob: Any
    school: str
    sex: Optional[str] = None
    age: Optional[str] = None
    address: Optional[str] = None
    parent_name: Optional[str] = None
    contact_number: Optional[str] = None
    systemic_conditions: Optional[str] = None
    allergies_food: Optional[str] = None
    allergies_medicines: Optional[str] = None

    def provided(self) -> Dict[str, Any]:
        """Attribute values that are not None"""
        return {f.name: getattr(self, f.name) for f in fields(self) if getattr(self, f.name) is not None}


@dataclass
class VisitInfo:
    """Exam attributes as entered or as decoded from a remote row"""
    visit_date: Optional[datetime] = None
    oral_notes: Optional[str] = None
    cleaning_notes: Optional[str] = None
    remarks: Optional[str] = None
    tooth_extraction: Optional[str] = None
    tooth_filling: Optional[str] = None
    tooth_decayed: Optional[str] = None
    tooth_missing: Optional[str] = None
    tooth_cleaning: Optional[str] = None
    fluoride: Optional[str] = None
    dental_consult: Optional[str] = None
    severe_cavities: Optional[str] = None
    tooth_chart: Optional[Dict[str, str]] = None

    def provided(self) -> Dict[str, Any]:
        return {f.name: getattr(self, f.name) for f in fields(self) if getattr(self, f.name) is not None}
