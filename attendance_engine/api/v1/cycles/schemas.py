from datetime import date
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field, model_validator

from attendance_engine.core.enums import WeekType


class SchoolCycleCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=50)
    start_date: date
    end_date: date
    is_active: bool = False

    @model_validator(mode="after")
    def validate_range(self) -> "SchoolCycleCreate":
        if self.end_date <= self.start_date:
            raise ValueError("end_date must be after start_date")
        return self


class BimesterCreate(BaseModel):
    number: int = Field(..., ge=1)
    name: Optional[str] = None
    start_date: date
    end_date: date
    is_active: bool = False

    @model_validator(mode="after")
    def validate_range(self) -> "BimesterCreate":
        if self.end_date < self.start_date:
            raise ValueError("end_date must be on or after start_date")
        return self


class AcademicWeekCreate(BaseModel):
    """Next week of a bimester. Must start the day after the previous week ends."""

    start_date: date
    end_date: date
    week_type: WeekType = WeekType.REGULAR

    @model_validator(mode="after")
    def validate_range(self) -> "AcademicWeekCreate":
        if self.end_date < self.start_date:
            raise ValueError("end_date must be on or after start_date")
        return self


class HolidayCreate(BaseModel):
    start_date: date
    end_date: Optional[date] = None  # single-day holiday when omitted
    description: str = Field(..., min_length=1, max_length=255)
    bimester_id: Optional[UUID] = None
    is_recovered: bool = False

    @model_validator(mode="after")
    def validate_range(self) -> "HolidayCreate":
        if self.end_date is not None and self.end_date < self.start_date:
            raise ValueError("end_date must be on or after start_date")
        return self
