from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from attendance_engine.auth.dependencies import get_current_user
from attendance_engine.auth.rbac import check_permission
from attendance_engine.auth.schemas import CurrentUser
from attendance_engine.core.enums import EnrollmentStatus
from attendance_engine.core.exceptions import ServiceError
from attendance_engine.db.session import get_db

from . import service
from .schemas import (
    EnrollmentCreate,
    EnrollmentResponse,
    EnrollmentStatusChangeResponse,
    EnrollmentStatusUpdate,
    StudentCreate,
    StudentResponse,
)

router = APIRouter(prefix="/api/v1/enrollments", tags=["enrollments"])


@router.post(
    "/students",
    response_model=StudentResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(check_permission("enrollments", "create"))],
)
async def create_student(payload: StudentCreate, db: AsyncSession = Depends(get_db)):
    try:
        return await service.create_student(db, payload)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.to_detail())


@router.post(
    "",
    response_model=EnrollmentResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(check_permission("enrollments", "create"))],
)
async def create_enrollment(
    payload: EnrollmentCreate,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    try:
        return await service.create_enrollment(db, current_user, payload)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.to_detail())


@router.get(
    "",
    response_model=List[EnrollmentResponse],
    dependencies=[Depends(check_permission("enrollments", "read"))],
)
async def list_enrollments(
    section_id: Optional[UUID] = Query(None),
    cycle_id: Optional[UUID] = Query(None),
    status_filter: Optional[EnrollmentStatus] = Query(None, alias="status"),
    db: AsyncSession = Depends(get_db),
):
    return await service.list_enrollments(db, section_id=section_id, cycle_id=cycle_id, status_filter=status_filter)


@router.post(
    "/{enrollment_id}/status",
    response_model=EnrollmentResponse,
    dependencies=[Depends(check_permission("enrollments", "update"))],
)
async def change_enrollment_status(
    enrollment_id: UUID,
    payload: EnrollmentStatusUpdate,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    """Move an enrollment to another status; the transition is appended to its history."""
    try:
        return await service.change_status(db, current_user, enrollment_id, payload)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.to_detail())


@router.get(
    "/{enrollment_id}/status-history",
    response_model=List[EnrollmentStatusChangeResponse],
    dependencies=[Depends(check_permission("enrollments", "read"))],
)
async def get_status_history(enrollment_id: UUID, db: AsyncSession = Depends(get_db)):
    try:
        return await service.get_status_history(db, enrollment_id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.to_detail())
