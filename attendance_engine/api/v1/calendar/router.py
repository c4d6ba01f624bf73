"""Calendar resolver API router."""

from datetime import date
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from attendance_engine.auth.rbac import check_permission
from attendance_engine.core.exceptions import ServiceError
from attendance_engine.core.lookups import with_lookup_timeout
from attendance_engine.db.session import get_db

from . import service
from .schemas import ActiveWindowResponse, DateClassificationResponse

router = APIRouter(prefix="/api/v1/calendar", tags=["calendar"])


@router.get(
    "/active-window",
    response_model=ActiveWindowResponse,
    dependencies=[Depends(check_permission("attendance", "read"))],
)
async def get_current_active_window(db: AsyncSession = Depends(get_db)):
    """Active bimester and weeks of the active cycle."""
    try:
        cycle = await with_lookup_timeout(service.require_active_cycle(db), "calendar")
        return await with_lookup_timeout(service.resolve_active_window(db, cycle.id), "calendar")
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.to_detail())


@router.get(
    "/cycles/{cycle_id}/active-window",
    response_model=ActiveWindowResponse,
    dependencies=[Depends(check_permission("attendance", "read"))],
)
async def get_active_window(cycle_id: UUID, db: AsyncSession = Depends(get_db)):
    try:
        return await with_lookup_timeout(service.resolve_active_window(db, cycle_id), "calendar")
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.to_detail())


@router.get(
    "/cycles/{cycle_id}/classify",
    response_model=DateClassificationResponse,
    dependencies=[Depends(check_permission("attendance", "read"))],
)
async def classify_date(
    cycle_id: UUID,
    target_date: date = Query(..., alias="date", description="Date to classify"),
    db: AsyncSession = Depends(get_db),
):
    """REGULAR, HOLIDAY, BREAK or OUT_OF_RANGE, with the covering bimester/week/holiday."""
    try:
        return await with_lookup_timeout(service.resolve_date_context(db, cycle_id, target_date), "calendar")
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.to_detail())
