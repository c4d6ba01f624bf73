"""Attendance API router."""

from datetime import date
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from attendance_engine.auth.dependencies import get_current_user
from attendance_engine.auth.rbac import check_permission
from attendance_engine.auth.schemas import CurrentUser
from attendance_engine.core.enums import LedgerOutcome
from attendance_engine.core.exceptions import ServiceError
from attendance_engine.db.session import get_db

from . import bulk_service, service
from .schemas import (
    AttendanceChangeResponse,
    AttendanceUpdate,
    AttendanceUpsert,
    BulkCourseRegistration,
    BulkRegistrationSummary,
    LedgerResultResponse,
    StudentAttendanceHistory,
)

router = APIRouter(prefix="/api/v1/attendance", tags=["attendance"])


@router.post(
    "",
    response_model=LedgerResultResponse,
    dependencies=[Depends(check_permission("attendance", "create"))],
)
async def upsert_attendance(
    payload: AttendanceUpsert,
    response: Response,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    """Record attendance for one student. 201 when a record is created, 200 otherwise."""
    try:
        result = await service.upsert(db, current_user, payload)
        if result.outcome == LedgerOutcome.CREATED:
            response.status_code = status.HTTP_201_CREATED
        return LedgerResultResponse(outcome=result.outcome, record=await service.record_response(db, result.record))
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.to_detail())


@router.patch(
    "/{attendance_id}",
    response_model=LedgerResultResponse,
    dependencies=[Depends(check_permission("attendance", "update"))],
)
async def update_attendance(
    attendance_id: UUID,
    payload: AttendanceUpdate,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    """Edit a record. change_reason is mandatory whenever a value changes."""
    try:
        result = await service.update_attendance(db, current_user, attendance_id, payload)
        return LedgerResultResponse(outcome=result.outcome, record=await service.record_response(db, result.record))
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.to_detail())


@router.post(
    "/bulk/by-courses",
    response_model=BulkRegistrationSummary,
    dependencies=[Depends(check_permission("attendance", "create"))],
)
async def register_by_courses(
    payload: BulkCourseRegistration,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    """Apply one status to every active student of the given course assignments; existing records are skipped."""
    try:
        return await bulk_service.register_by_courses(db, current_user, payload)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.to_detail())


@router.get(
    "/enrollments/{enrollment_id}",
    response_model=StudentAttendanceHistory,
    dependencies=[Depends(check_permission("attendance", "read"))],
)
async def get_student_attendance(
    enrollment_id: UUID,
    start_date: Optional[date] = Query(None),
    end_date: Optional[date] = Query(None),
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    db: AsyncSession = Depends(get_db),
):
    try:
        return await service.get_student_attendance(
            db, enrollment_id, limit=limit, offset=offset, start_date=start_date, end_date=end_date
        )
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.to_detail())


@router.get(
    "/{attendance_id}/changes",
    response_model=List[AttendanceChangeResponse],
    dependencies=[Depends(check_permission("attendance", "read"))],
)
async def list_changes(attendance_id: UUID, db: AsyncSession = Depends(get_db)):
    """Audit trail of one record, oldest first."""
    try:
        return await service.list_changes(db, attendance_id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.to_detail())
