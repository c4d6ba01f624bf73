import re
from datetime import date, datetime
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, Field, field_validator

from attendance_engine.core.enums import ChangeType, LedgerOutcome, WriteMode

_HHMM = re.compile(r"^([01]\d|2[0-3]):[0-5]\d$")


def _check_hhmm(v: Optional[str]) -> Optional[str]:
    if v is None or v == "":
        return None
    if not _HHMM.match(v):
        raise ValueError("time must be HH:MM (24h)")
    return v


# ----- Single record -----
class AttendanceUpsert(BaseModel):
    """Create or update one attendance record keyed by (enrollment, date, course assignment)."""

    enrollment_id: UUID
    date: date
    course_assignment_id: Optional[UUID] = Field(None, description="Omit for day-level attendance")
    status_code: str = Field(..., min_length=1, max_length=10)
    notes: Optional[str] = None
    arrival_time: Optional[str] = Field(None, description="HH:MM")
    departure_time: Optional[str] = Field(None, description="HH:MM")
    change_reason: Optional[str] = Field(None, description="Required when an existing record changes")
    mode: WriteMode = WriteMode.UPSERT
    override_calendar: bool = Field(False, description="Write on a non-instructional date (attendance.backfill)")

    @field_validator("arrival_time", "departure_time")
    @classmethod
    def validate_times(cls, v: Optional[str]) -> Optional[str]:
        return _check_hhmm(v)


class AttendanceUpdate(BaseModel):
    """Edit an existing record. Unset fields keep their current value."""

    status_code: Optional[str] = Field(None, min_length=1, max_length=10)
    notes: Optional[str] = None
    arrival_time: Optional[str] = None
    departure_time: Optional[str] = None
    change_reason: Optional[str] = None
    override_calendar: bool = False

    @field_validator("arrival_time", "departure_time")
    @classmethod
    def validate_times(cls, v: Optional[str]) -> Optional[str]:
        return _check_hhmm(v)


class AttendanceRecordResponse(BaseModel):
    id: UUID
    enrollment_id: UUID
    date: date
    course_assignment_id: Optional[UUID] = None
    status_id: UUID
    status_code: str
    notes: Optional[str] = None
    arrival_time: Optional[str] = None
    departure_time: Optional[str] = None
    minutes_late: Optional[int] = None
    has_justification: bool
    justification_id: Optional[UUID] = None
    recorded_by: Optional[UUID] = None
    recorded_at: datetime
    last_modified_by: Optional[UUID] = None
    last_modified_at: datetime


class LedgerResultResponse(BaseModel):
    outcome: LedgerOutcome
    record: AttendanceRecordResponse


class AttendanceChangeResponse(BaseModel):
    id: UUID
    student_attendance_id: UUID
    change_type: ChangeType
    status_code_before: Optional[str] = None
    status_code_after: str
    notes_before: Optional[str] = None
    notes_after: Optional[str] = None
    arrival_time_before: Optional[str] = None
    arrival_time_after: Optional[str] = None
    justification_added_id: Optional[UUID] = None
    change_reason: Optional[str] = None
    changed_by: Optional[UUID] = None
    changed_at: datetime


class AttendanceHistoryItem(AttendanceRecordResponse):
    changes: List[AttendanceChangeResponse] = []


class StudentAttendanceHistory(BaseModel):
    enrollment_id: UUID
    total: int
    items: List[AttendanceHistoryItem]


# ----- Bulk registration -----
class BulkCourseRegistration(BaseModel):
    """Mark every active student of the given course assignments with one status."""

    date: date
    course_assignment_ids: List[UUID]
    status_code: str = Field(..., min_length=1, max_length=10)
    notes: Optional[str] = None
    arrival_time: Optional[str] = None

    @field_validator("arrival_time")
    @classmethod
    def validate_arrival_time(cls, v: Optional[str]) -> Optional[str]:
        return _check_hhmm(v)


class BulkCourseResult(BaseModel):
    course_assignment_id: UUID
    section_id: Optional[UUID] = None
    created: int = 0
    skipped: int = 0
    enrollments: int = 0
    error: Optional[dict] = None


class BulkRegistrationSummary(BaseModel):
    created_attendances: int
    skipped_existing: int
    created_reports: int
    enrollments_covered: int
    records: List[AttendanceRecordResponse]
    courses: List[BulkCourseResult]
