from datetime import date, datetime
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel

from attendance_engine.core.enums import DateClassification, WeekType


class SchoolCycleResponse(BaseModel):
    id: UUID
    name: str
    start_date: date
    end_date: date
    is_active: bool
    is_archived: bool
    created_at: datetime
    archived_at: Optional[datetime] = None


class BimesterResponse(BaseModel):
    id: UUID
    cycle_id: UUID
    number: int
    name: Optional[str] = None
    start_date: date
    end_date: date
    is_active: bool
    weeks_count: int = 0


class AcademicWeekResponse(BaseModel):
    id: UUID
    bimester_id: UUID
    number: int
    start_date: date
    end_date: date
    week_type: WeekType


class HolidayResponse(BaseModel):
    id: UUID
    cycle_id: UUID
    bimester_id: Optional[UUID] = None
    start_date: date
    end_date: date
    description: str
    is_recovered: bool


class ActiveWindowResponse(BaseModel):
    """Active bimester of a cycle and its ordered weeks."""

    cycle: SchoolCycleResponse
    active_bimester: BimesterResponse
    weeks: List[AcademicWeekResponse]


class DateClassificationResponse(BaseModel):
    """How a date is treated by the calendar, with the units that cover it."""

    cycle_id: UUID
    date: date
    classification: DateClassification
    bimester_id: Optional[UUID] = None
    week_id: Optional[UUID] = None
    week_type: Optional[WeekType] = None
    holiday_id: Optional[UUID] = None
    holiday_description: Optional[str] = None
