import re
from datetime import datetime
from typing import Dict, List, Literal, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

_HHMM = re.compile(r"^([01]\d|2[0-3]):[0-5]\d$")


class AttendanceStatusBase(BaseModel):
    code: str = Field(..., min_length=1, max_length=10)
    name: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = None
    is_negative: bool = False
    is_excused: bool = False
    is_temporal: bool = False
    requires_justification: bool = False
    can_have_notes: bool = True
    color_code: Optional[str] = Field(None, max_length=20)
    order: int = 0


class AttendanceStatusCreate(AttendanceStatusBase):
    pass


class AttendanceStatusUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = None
    is_negative: Optional[bool] = None
    is_excused: Optional[bool] = None
    is_temporal: Optional[bool] = None
    requires_justification: Optional[bool] = None
    can_have_notes: Optional[bool] = None
    color_code: Optional[str] = Field(None, max_length=20)
    order: Optional[int] = None
    is_active: Optional[bool] = None


class AttendanceStatusResponse(AttendanceStatusBase):
    """Immutable snapshot served from the registry cache."""

    model_config = ConfigDict(from_attributes=True, frozen=True)

    id: UUID
    is_active: bool


class RoleStatusPermissionSet(BaseModel):
    role_id: UUID
    status_code: str
    can_create: bool = True
    can_modify: bool = False


class RoleStatusPermissionResponse(BaseModel):
    id: UUID
    role_id: UUID
    attendance_status_id: UUID
    status_code: str
    can_create: bool
    can_modify: bool


class AttendanceConfigSave(BaseModel):
    """Replaces the active configuration. Defaults mirror the stock catalog."""

    name: str = Field("Default", min_length=1, max_length=100)
    risk_threshold_percentage: float = Field(80.0, ge=0, le=100)
    consecutive_absence_alert: int = Field(3, ge=1)
    late_threshold_time: str = "08:30"
    mark_as_tardy_after_minutes: int = Field(15, ge=0)
    justification_required_after: int = Field(3, ge=0)
    max_justification_days: int = Field(365, ge=1)
    auto_approve_justification: bool = False
    auto_approval_after_days: int = Field(7, ge=0)
    notes_required_for_states: List[str] = []
    justified_status_map: Dict[str, str] = {}

    @field_validator("late_threshold_time")
    @classmethod
    def validate_time(cls, v: str) -> str:
        if not _HHMM.match(v):
            raise ValueError("late_threshold_time must be HH:MM")
        return v

    @model_validator(mode="after")
    def validate_justification_window(self):
        if self.max_justification_days < self.justification_required_after:
            raise ValueError("max_justification_days must be >= justification_required_after")
        return self


class AttendanceConfigResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True, frozen=True)

    id: UUID
    name: str
    risk_threshold_percentage: float
    consecutive_absence_alert: int
    late_threshold_time: str
    mark_as_tardy_after_minutes: int
    justification_required_after: int
    max_justification_days: int
    auto_approve_justification: bool
    auto_approval_after_days: int
    notes_required_for_states: List[str]
    justified_status_map: Dict[str, str]
    is_active: bool
    updated_at: Optional[datetime] = None


StatusAction = Literal["create", "modify"]
