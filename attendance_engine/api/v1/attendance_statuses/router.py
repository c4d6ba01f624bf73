from typing import List
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from attendance_engine.auth.dependencies import get_current_user
from attendance_engine.auth.rbac import ADMIN_ROLES, check_permission
from attendance_engine.auth.schemas import CurrentUser
from attendance_engine.core.exceptions import ServiceError
from attendance_engine.db.session import get_db

from . import service
from .schemas import (
    AttendanceConfigResponse,
    AttendanceConfigSave,
    AttendanceStatusCreate,
    AttendanceStatusResponse,
    AttendanceStatusUpdate,
    RoleStatusPermissionResponse,
    RoleStatusPermissionSet,
    StatusAction,
)

router = APIRouter(prefix="/api/v1/attendance-statuses", tags=["attendance-statuses"])


@router.get(
    "",
    response_model=List[AttendanceStatusResponse],
    dependencies=[Depends(check_permission("attendance", "read"))],
)
async def list_statuses(db: AsyncSession = Depends(get_db)):
    try:
        return await service.load_statuses(db)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.to_detail())


@router.get("/allowed", response_model=List[AttendanceStatusResponse])
async def list_allowed_statuses(
    action: StatusAction = Query("create"),
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    """Statuses the caller's role may use for new records (create) or edits (modify)."""
    try:
        if current_user.role in ADMIN_ROLES:
            return await service.load_statuses(db)
        return await service.load_allowed_statuses(db, current_user.role_id, action)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.to_detail())


@router.get(
    "/config",
    response_model=AttendanceConfigResponse,
    dependencies=[Depends(check_permission("attendance", "read"))],
)
async def get_active_config(db: AsyncSession = Depends(get_db)):
    try:
        return await service.load_active_config(db)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.to_detail())


@router.put(
    "/config",
    response_model=AttendanceConfigResponse,
    dependencies=[Depends(check_permission("attendance_config", "update"))],
)
async def save_config(payload: AttendanceConfigSave, db: AsyncSession = Depends(get_db)):
    try:
        return await service.save_config(db, payload)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.to_detail())


@router.post(
    "",
    response_model=AttendanceStatusResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(check_permission("attendance_config", "create"))],
)
async def create_status(payload: AttendanceStatusCreate, db: AsyncSession = Depends(get_db)):
    try:
        return await service.create_status(db, payload)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.to_detail())


@router.patch(
    "/{status_id}",
    response_model=AttendanceStatusResponse,
    dependencies=[Depends(check_permission("attendance_config", "update"))],
)
async def update_status(status_id: UUID, payload: AttendanceStatusUpdate, db: AsyncSession = Depends(get_db)):
    try:
        return await service.update_status(db, status_id, payload)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.to_detail())


@router.put(
    "/role-permissions",
    response_model=RoleStatusPermissionResponse,
    dependencies=[Depends(check_permission("attendance_config", "update"))],
)
async def set_role_permission(payload: RoleStatusPermissionSet, db: AsyncSession = Depends(get_db)):
    try:
        return await service.set_role_permission(db, payload)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.to_detail())


@router.post(
    "/cache/invalidate",
    status_code=status.HTTP_204_NO_CONTENT,
    dependencies=[Depends(check_permission("attendance_config", "update"))],
)
async def invalidate_cache():
    """Drop cached statuses and configuration after out-of-band edits."""
    service.invalidate()
