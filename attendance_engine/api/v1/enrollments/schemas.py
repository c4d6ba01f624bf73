from datetime import date, datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field

from attendance_engine.core.enums import EnrollmentStatus


class StudentCreate(BaseModel):
    code: Optional[str] = Field(None, max_length=30)
    given_names: str = Field(..., min_length=1, max_length=150)
    last_names: str = Field(..., min_length=1, max_length=150)


class StudentResponse(BaseModel):
    id: UUID
    code: Optional[str] = None
    given_names: str
    last_names: str
    full_name: str


class EnrollmentCreate(BaseModel):
    student_id: UUID
    section_id: UUID
    cycle_id: Optional[UUID] = Field(None, description="Defaults to the active cycle")
    date_enrolled: Optional[date] = Field(None, description="Defaults to today")


class EnrollmentStatusUpdate(BaseModel):
    status: EnrollmentStatus
    reason: Optional[str] = None


class EnrollmentResponse(BaseModel):
    id: UUID
    student_id: UUID
    student_name: Optional[str] = None
    section_id: UUID
    cycle_id: UUID
    status: EnrollmentStatus
    date_enrolled: date
    created_at: datetime


class EnrollmentStatusChangeResponse(BaseModel):
    id: UUID
    enrollment_id: UUID
    previous_status: Optional[EnrollmentStatus] = None
    new_status: EnrollmentStatus
    reason: Optional[str] = None
    changed_by: Optional[UUID] = None
    changed_at: datetime
