from datetime import date, datetime
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, Field, model_validator

from attendance_engine.core.enums import JustificationStatus


class JustificationCreate(BaseModel):
    enrollment_id: UUID
    start_date: date
    end_date: date
    type: str = Field(..., min_length=1, max_length=50, description="medical, family, other...")
    reason: str = Field(..., min_length=1)
    description: Optional[str] = None
    document_url: Optional[str] = Field(None, max_length=500, description="Stored by the upload service")

    @model_validator(mode="after")
    def validate_range(self) -> "JustificationCreate":
        if self.end_date < self.start_date:
            raise ValueError("end_date must be on or after start_date")
        return self


class JustificationApprove(BaseModel):
    auto_update_attendance: bool = True


class JustificationReject(BaseModel):
    rejection_reason: Optional[str] = None


class JustificationBulkApprove(BaseModel):
    justification_ids: List[UUID]
    auto_update_attendance: bool = True


class JustificationBulkReject(BaseModel):
    justification_ids: List[UUID]
    rejection_reason: Optional[str] = None


class JustificationResponse(BaseModel):
    id: UUID
    enrollment_id: UUID
    start_date: date
    end_date: date
    type: str
    reason: str
    description: Optional[str] = None
    document_url: Optional[str] = None
    status: JustificationStatus
    approved_by: Optional[UUID] = None
    approved_at: Optional[datetime] = None
    rejection_reason: Optional[str] = None
    auto_approved: bool
    submitted_by: Optional[UUID] = None
    submitted_at: datetime
    records_updated: int = 0


class BulkItemResult(BaseModel):
    justification_id: UUID
    ok: bool
    status: Optional[JustificationStatus] = None
    records_updated: int = 0
    error: Optional[dict] = None


class BulkJustificationResult(BaseModel):
    succeeded: int
    failed: int
    items: List[BulkItemResult]


class AutoApprovalSweepResult(BaseModel):
    enabled: bool
    approved: int
    failed: int = 0
    justification_ids: List[UUID] = []
