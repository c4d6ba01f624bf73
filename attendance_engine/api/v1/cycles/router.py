from typing import List
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from attendance_engine.api.v1.calendar.schemas import (
    AcademicWeekResponse,
    BimesterResponse,
    HolidayResponse,
    SchoolCycleResponse,
)
from attendance_engine.auth.rbac import check_permission
from attendance_engine.core.exceptions import ServiceError
from attendance_engine.db.session import get_db

from .schemas import AcademicWeekCreate, BimesterCreate, HolidayCreate, SchoolCycleCreate
from . import service

router = APIRouter(prefix="/api/v1/cycles", tags=["school-cycles"])


@router.post(
    "",
    response_model=SchoolCycleResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(check_permission("calendar", "create"))],
)
async def create_cycle(payload: SchoolCycleCreate, db: AsyncSession = Depends(get_db)):
    """Create a school cycle. is_active=true makes it the only active cycle."""
    try:
        return await service.create_cycle(db, payload)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.to_detail())


@router.get(
    "",
    response_model=List[SchoolCycleResponse],
    dependencies=[Depends(check_permission("calendar", "read"))],
)
async def list_cycles(
    include_archived: bool = Query(True, description="Include archived cycles"),
    db: AsyncSession = Depends(get_db),
):
    return await service.list_cycles(db, include_archived=include_archived)


@router.post(
    "/{cycle_id}/activate",
    response_model=SchoolCycleResponse,
    dependencies=[Depends(check_permission("calendar", "update"))],
)
async def activate_cycle(cycle_id: UUID, db: AsyncSession = Depends(get_db)):
    try:
        return await service.activate_cycle(db, cycle_id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.to_detail())


@router.post(
    "/{cycle_id}/archive",
    response_model=SchoolCycleResponse,
    dependencies=[Depends(check_permission("calendar", "update"))],
)
async def archive_cycle(cycle_id: UUID, db: AsyncSession = Depends(get_db)):
    """Archive a cycle. Archived cycles reject every write."""
    try:
        return await service.archive_cycle(db, cycle_id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.to_detail())


@router.post(
    "/{cycle_id}/bimesters",
    response_model=BimesterResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(check_permission("calendar", "create"))],
)
async def create_bimester(cycle_id: UUID, payload: BimesterCreate, db: AsyncSession = Depends(get_db)):
    try:
        return await service.create_bimester(db, cycle_id, payload)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.to_detail())


@router.post(
    "/bimesters/{bimester_id}/activate",
    response_model=BimesterResponse,
    dependencies=[Depends(check_permission("calendar", "update"))],
)
async def activate_bimester(bimester_id: UUID, db: AsyncSession = Depends(get_db)):
    try:
        return await service.activate_bimester(db, bimester_id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.to_detail())


@router.post(
    "/bimesters/{bimester_id}/weeks",
    response_model=AcademicWeekResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(check_permission("calendar", "create"))],
)
async def create_week(bimester_id: UUID, payload: AcademicWeekCreate, db: AsyncSession = Depends(get_db)):
    """Append the next academic week to a bimester."""
    try:
        return await service.create_week(db, bimester_id, payload)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.to_detail())


@router.post(
    "/{cycle_id}/holidays",
    response_model=HolidayResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(check_permission("calendar", "create"))],
)
async def create_holiday(cycle_id: UUID, payload: HolidayCreate, db: AsyncSession = Depends(get_db)):
    try:
        return await service.create_holiday(db, cycle_id, payload)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.to_detail())
