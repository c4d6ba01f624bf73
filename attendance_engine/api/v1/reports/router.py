from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from attendance_engine.auth.rbac import check_permission
from attendance_engine.core.exceptions import ServiceError
from attendance_engine.db.session import get_db

from . import service
from .schemas import AttendanceReportResponse, ReportRecalculate

router = APIRouter(prefix="/api/v1/attendance-reports", tags=["attendance-reports"])


@router.post(
    "/recalculate",
    response_model=AttendanceReportResponse,
    dependencies=[Depends(check_permission("attendance_reports", "update"))],
)
async def recalculate_report(payload: ReportRecalculate, db: AsyncSession = Depends(get_db)):
    """Recompute one report now (the queue does this after every write)."""
    try:
        return await service.recalculate(db, payload.enrollment_id, payload.bimester_id, payload.course_id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.to_detail())


@router.get(
    "/bimesters/{bimester_id}",
    response_model=List[AttendanceReportResponse],
    dependencies=[Depends(check_permission("attendance_reports", "read"))],
)
async def list_reports(
    bimester_id: UUID,
    at_risk_only: bool = Query(False),
    course_id: Optional[UUID] = Query(None),
    section_id: Optional[UUID] = Query(None),
    db: AsyncSession = Depends(get_db),
):
    return await service.list_reports(
        db, bimester_id, at_risk_only=at_risk_only, course_id=course_id, section_id=section_id
    )


@router.get(
    "/enrollments/{enrollment_id}/bimesters/{bimester_id}",
    response_model=AttendanceReportResponse,
    dependencies=[Depends(check_permission("attendance_reports", "read"))],
)
async def get_report(
    enrollment_id: UUID,
    bimester_id: UUID,
    course_id: Optional[UUID] = Query(None),
    db: AsyncSession = Depends(get_db),
):
    try:
        return await service.get_report(db, enrollment_id, bimester_id, course_id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.to_detail())
