"""
Attendance status registry.

Statuses, per-role status permissions and the active configuration are read on
every ledger write, so they are cached in-process as immutable snapshots. Every
administrative mutation below drops the cache; invalidate() does the same for
changes made elsewhere (seed scripts, other processes).
"""

from typing import Dict, List, Optional, Tuple
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from attendance_engine.core.app_logger import get_logger
from attendance_engine.core.exceptions import (
    NO_ACTIVE_CONFIG,
    NO_STATUSES_CONFIGURED,
    ConflictError,
    NotFoundError,
    PreconditionError,
    ValidationError,
)
from attendance_engine.core.models import AttendanceConfig, AttendanceStatus, Role, RoleAttendancePermission

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

logger = get_logger("status_registry")

_statuses: Optional[List[AttendanceStatusResponse]] = None
_allowed: Dict[Tuple[UUID, str], List[AttendanceStatusResponse]] = {}
_config: Optional[AttendanceConfigResponse] = None


def invalidate() -> None:
    """Drop every cached snapshot; the next read goes to the database."""
    global _statuses, _config
    _statuses = None
    _config = None
    _allowed.clear()


async def load_statuses(db: AsyncSession) -> List[AttendanceStatusResponse]:
    """All active statuses ordered for display."""
    global _statuses
    if _statuses is None:
        result = await db.execute(
            select(AttendanceStatus)
            .where(AttendanceStatus.is_active.is_(True))
            .order_by(AttendanceStatus.order, AttendanceStatus.code)
        )
        _statuses = [AttendanceStatusResponse.model_validate(s) for s in result.scalars().all()]
    if not _statuses:
        raise PreconditionError("No attendance statuses are configured", NO_STATUSES_CONFIGURED)
    return _statuses


async def get_status_by_code(db: AsyncSession, code: str) -> AttendanceStatusResponse:
    for s in await load_statuses(db):
        if s.code == code:
            return s
    raise ValidationError(f"Unknown attendance status '{code}'")


async def get_status_by_id(db: AsyncSession, status_id: UUID) -> AttendanceStatusResponse:
    """Lookup including inactive statuses, for records written before a status was retired."""
    for s in await load_statuses(db):
        if s.id == status_id:
            return s
    row = await db.get(AttendanceStatus, status_id)
    if row is None:
        raise NotFoundError(f"Attendance status {status_id} not found")
    return AttendanceStatusResponse.model_validate(row)


async def load_allowed_statuses(
    db: AsyncSession,
    role_id: Optional[UUID],
    action: StatusAction = "create",
) -> List[AttendanceStatusResponse]:
    """Statuses a role may assign on create, or change a record to on modify."""
    await load_statuses(db)
    if role_id is None:
        return []
    key = (role_id, action)
    if key not in _allowed:
        flag = RoleAttendancePermission.can_create if action == "create" else RoleAttendancePermission.can_modify
        result = await db.execute(
            select(RoleAttendancePermission.attendance_status_id).where(
                RoleAttendancePermission.role_id == role_id,
                flag.is_(True),
            )
        )
        ids = {r[0] for r in result.all()}
        _allowed[key] = [s for s in _statuses or [] if s.id in ids]
    return _allowed[key]


async def load_active_config(db: AsyncSession) -> AttendanceConfigResponse:
    global _config
    if _config is None:
        result = await db.execute(
            select(AttendanceConfig)
            .where(AttendanceConfig.is_active.is_(True))
            .order_by(AttendanceConfig.updated_at.desc())
        )
        row = result.scalars().first()
        if row is None:
            raise PreconditionError("No active attendance configuration", NO_ACTIVE_CONFIG)
        _config = AttendanceConfigResponse.model_validate(row)
    return _config


# ----- Administration -----
async def list_all_statuses(db: AsyncSession) -> List[AttendanceStatusResponse]:
    """Every status including inactive ones (admin view, uncached)."""
    result = await db.execute(select(AttendanceStatus).order_by(AttendanceStatus.order, AttendanceStatus.code))
    return [AttendanceStatusResponse.model_validate(s) for s in result.scalars().all()]


async def create_status(db: AsyncSession, payload: AttendanceStatusCreate) -> AttendanceStatusResponse:
    code = payload.code.strip().upper()
    existing = await db.execute(select(AttendanceStatus).where(AttendanceStatus.code == code))
    if existing.scalar_one_or_none():
        raise ConflictError(f"Attendance status '{code}' already exists")
    row = AttendanceStatus(**payload.model_dump(exclude={"code"}), code=code, is_active=True)
    db.add(row)
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise ConflictError(f"Attendance status '{code}' already exists")
    await db.refresh(row)
    invalidate()
    logger.info("Attendance status %s created", code)
    return AttendanceStatusResponse.model_validate(row)


async def update_status(db: AsyncSession, status_id: UUID, payload: AttendanceStatusUpdate) -> AttendanceStatusResponse:
    row = await db.get(AttendanceStatus, status_id)
    if not row:
        raise NotFoundError("Attendance status not found")
    for field, value in payload.model_dump(exclude_unset=True).items():
        setattr(row, field, value)
    await db.commit()
    await db.refresh(row)
    invalidate()
    return AttendanceStatusResponse.model_validate(row)


async def set_role_permission(db: AsyncSession, payload: RoleStatusPermissionSet) -> RoleStatusPermissionResponse:
    """Grant or revise which statuses a role may create or modify records with."""
    role = await db.get(Role, payload.role_id)
    if not role:
        raise NotFoundError("Role not found")
    status_result = await db.execute(
        select(AttendanceStatus).where(AttendanceStatus.code == payload.status_code.strip().upper())
    )
    status_row = status_result.scalar_one_or_none()
    if not status_row:
        raise ValidationError(f"Unknown attendance status '{payload.status_code}'")

    result = await db.execute(
        select(RoleAttendancePermission).where(
            RoleAttendancePermission.role_id == role.id,
            RoleAttendancePermission.attendance_status_id == status_row.id,
        )
    )
    perm = result.scalar_one_or_none()
    if perm is None:
        perm = RoleAttendancePermission(role_id=role.id, attendance_status_id=status_row.id)
        db.add(perm)
    perm.can_create = payload.can_create
    perm.can_modify = payload.can_modify
    await db.commit()
    await db.refresh(perm)
    invalidate()
    return RoleStatusPermissionResponse(
        id=perm.id,
        role_id=perm.role_id,
        attendance_status_id=perm.attendance_status_id,
        status_code=status_row.code,
        can_create=perm.can_create,
        can_modify=perm.can_modify,
    )


async def save_config(db: AsyncSession, payload: AttendanceConfigSave) -> AttendanceConfigResponse:
    """Store a new active configuration; previous ones stay for history but are deactivated."""
    known = {s.code for s in await list_all_statuses(db)}
    referenced = set(payload.notes_required_for_states)
    referenced.update(payload.justified_status_map.keys())
    referenced.update(payload.justified_status_map.values())
    unknown = sorted(referenced - known)
    if unknown:
        raise ValidationError(f"Unknown status codes in configuration: {', '.join(unknown)}")

    await db.execute(update(AttendanceConfig).values(is_active=False))
    row = AttendanceConfig(**payload.model_dump(), is_active=True)
    db.add(row)
    await db.commit()
    await db.refresh(row)
    invalidate()
    logger.info("Attendance configuration '%s' activated", row.name)
    return AttendanceConfigResponse.model_validate(row)
