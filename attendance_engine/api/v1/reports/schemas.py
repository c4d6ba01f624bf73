from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel


class ReportRecalculate(BaseModel):
    enrollment_id: UUID
    bimester_id: UUID
    course_id: Optional[UUID] = None


class AttendanceReportResponse(BaseModel):
    id: UUID
    enrollment_id: UUID
    bimester_id: UUID
    course_id: Optional[UUID] = None
    total_marked: int
    count_present: int
    count_absent: int
    count_absent_justified: int
    count_tardy: int
    count_tardy_justified: int
    attendance_percentage: float
    absence_percentage: float
    consecutive_absences: int
    is_at_risk: bool
    needs_intervention: bool
    is_stale: bool
    last_calculated_at: Optional[datetime] = None
