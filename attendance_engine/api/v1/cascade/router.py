from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from attendance_engine.auth.rbac import check_permission
from attendance_engine.core.exceptions import ServiceError
from attendance_engine.core.lookups import with_lookup_timeout
from attendance_engine.db.session import get_db

from . import service
from .schemas import CascadeTreeResponse

router = APIRouter(prefix="/api/v1/cascade", tags=["cascade"])


@router.get(
    "/tree",
    response_model=CascadeTreeResponse,
    dependencies=[Depends(check_permission("attendance", "read"))],
)
async def get_cascade_tree(
    cycle_id: Optional[UUID] = Query(None, description="Defaults to the active cycle"),
    bimester_id: Optional[UUID] = Query(None),
    include_inactive: bool = Query(False),
    db: AsyncSession = Depends(get_db),
):
    """Grades, sections and course assignments of a cycle."""
    try:
        return await with_lookup_timeout(
            service.resolve_tree(db, cycle_id=cycle_id, bimester_id=bimester_id, include_inactive=include_inactive),
            "cascade",
        )
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.to_detail())
