from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from attendance_engine.auth.dependencies import get_current_user
from attendance_engine.auth.rbac import check_permission
from attendance_engine.auth.schemas import CurrentUser
from attendance_engine.core.enums import JustificationStatus
from attendance_engine.core.exceptions import ServiceError
from attendance_engine.db.session import get_db

from . import service
from .schemas import (
    AutoApprovalSweepResult,
    BulkJustificationResult,
    JustificationApprove,
    JustificationBulkApprove,
    JustificationBulkReject,
    JustificationCreate,
    JustificationReject,
    JustificationResponse,
)

router = APIRouter(prefix="/api/v1/justifications", tags=["justifications"])


@router.post(
    "",
    response_model=JustificationResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(check_permission("justifications", "create"))],
)
async def submit_justification(
    payload: JustificationCreate,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    try:
        return await service.submit(db, current_user, payload)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.to_detail())


@router.get(
    "",
    response_model=List[JustificationResponse],
    dependencies=[Depends(check_permission("justifications", "read"))],
)
async def list_justifications(
    response: Response,
    enrollment_id: Optional[UUID] = Query(None),
    status_filter: Optional[JustificationStatus] = Query(None, alias="status"),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    db: AsyncSession = Depends(get_db),
):
    """List justifications, newest first. Total count is returned in X-Total-Count."""
    total, items = await service.list_justifications(
        db, enrollment_id=enrollment_id, status_filter=status_filter, limit=limit, offset=offset
    )
    response.headers["X-Total-Count"] = str(total)
    return items


@router.post(
    "/bulk/approve",
    response_model=BulkJustificationResult,
    dependencies=[Depends(check_permission("justifications", "approve"))],
)
async def bulk_approve(
    payload: JustificationBulkApprove,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    try:
        return await service.bulk_approve(db, current_user, payload.justification_ids, payload.auto_update_attendance)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.to_detail())


@router.post(
    "/bulk/reject",
    response_model=BulkJustificationResult,
    dependencies=[Depends(check_permission("justifications", "approve"))],
)
async def bulk_reject(
    payload: JustificationBulkReject,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    try:
        return await service.bulk_reject(db, current_user, payload.justification_ids, payload.rejection_reason)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.to_detail())


@router.post(
    "/auto-approval/sweep",
    response_model=AutoApprovalSweepResult,
    dependencies=[Depends(check_permission("justifications", "approve"))],
)
async def run_auto_approval_sweep(db: AsyncSession = Depends(get_db)):
    """Run the auto-approval sweep now instead of waiting for the scheduler."""
    try:
        return await service.sweep_auto_approvals(db)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.to_detail())


@router.get(
    "/{justification_id}",
    response_model=JustificationResponse,
    dependencies=[Depends(check_permission("justifications", "read"))],
)
async def get_justification(justification_id: UUID, db: AsyncSession = Depends(get_db)):
    try:
        return await service.get_justification(db, justification_id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.to_detail())


@router.post(
    "/{justification_id}/approve",
    response_model=JustificationResponse,
    dependencies=[Depends(check_permission("justifications", "approve"))],
)
async def approve_justification(
    justification_id: UUID,
    payload: JustificationApprove,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    """Approve; with auto_update_attendance the covered negative records become justified."""
    try:
        return await service.approve(db, current_user, justification_id, payload.auto_update_attendance)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.to_detail())


@router.post(
    "/{justification_id}/reject",
    response_model=JustificationResponse,
    dependencies=[Depends(check_permission("justifications", "approve"))],
)
async def reject_justification(
    justification_id: UUID,
    payload: JustificationReject,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    try:
        return await service.reject(db, current_user, justification_id, payload.rejection_reason)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.to_detail())
