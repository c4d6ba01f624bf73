"""
Seed script for the attendance catalog.

This script:
1. Inserts the stock attendance statuses (P, I, IJ, TI, TJ, E)
2. Inserts the COORDINATOR and TEACHER roles with their module permissions
3. Grants each role the statuses it may create or modify records with
4. Activates the default attendance configuration when none is active

Running it twice is safe; existing rows are updated in place.
"""
import asyncio
from typing import Dict, List, Tuple

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from attendance_engine.api.v1.attendance_statuses import service as registry
from attendance_engine.core.app_logger import get_logger
from attendance_engine.core.models import AttendanceConfig, AttendanceStatus, Role, RoleAttendancePermission
from attendance_engine.db.session import AsyncSessionLocal, Base, dispose_engine, engine

logger = get_logger("seed")

# (code, name, is_negative, is_excused, is_temporal, requires_justification, color, order)
STATUSES: List[Tuple[str, str, bool, bool, bool, bool, str, int]] = [
    ("P", "Present", False, False, False, False, "#22c55e", 1),
    ("I", "Absent", True, False, False, True, "#ef4444", 2),
    ("IJ", "Justified absence", False, True, False, False, "#f97316", 3),
    ("TI", "Tardy", True, False, True, True, "#eab308", 4),
    ("TJ", "Justified tardy", False, True, True, False, "#84cc16", 5),
    ("E", "Excused", False, True, False, False, "#3b82f6", 6),
]

ROLE_PERMISSIONS: Dict[str, Dict[str, Dict]] = {
    "COORDINATOR": {
        "attendance": {"create": True, "read": True, "update": True, "backfill": True, "scope": "all"},
        "justifications": {"create": True, "read": True, "approve": True},
        "attendance_reports": {"read": True, "update": True},
        "calendar": {"read": True},
        "enrollments": {"read": True},
    },
    "TEACHER": {
        "attendance": {"create": True, "read": True, "update": True, "scope": "own"},
        "justifications": {"create": True, "read": True},
        "attendance_reports": {"read": True},
        "calendar": {"read": True},
    },
}

# role -> {status_code: (can_create, can_modify)}
ROLE_STATUSES: Dict[str, Dict[str, Tuple[bool, bool]]] = {
    "COORDINATOR": {code: (True, True) for code, *_ in STATUSES},
    "TEACHER": {"P": (True, True), "I": (True, True), "TI": (True, True)},
}

DEFAULT_CONFIG = {
    "name": "Default",
    "risk_threshold_percentage": 80.0,
    "consecutive_absence_alert": 3,
    "late_threshold_time": "08:30",
    "mark_as_tardy_after_minutes": 15,
    "justification_required_after": 3,
    "max_justification_days": 365,
    "auto_approve_justification": False,
    "auto_approval_after_days": 7,
    "notes_required_for_states": ["IJ", "TJ"],
    "justified_status_map": {"I": "IJ", "TI": "TJ"},
}


async def seed_statuses(db: AsyncSession) -> Dict[str, AttendanceStatus]:
    by_code: Dict[str, AttendanceStatus] = {}
    for code, name, negative, excused, temporal, requires_just, color, order in STATUSES:
        result = await db.execute(select(AttendanceStatus).where(AttendanceStatus.code == code))
        status = result.scalar_one_or_none()
        if status is None:
            status = AttendanceStatus(code=code)
            db.add(status)
        status.name = name
        status.is_negative = negative
        status.is_excused = excused
        status.is_temporal = temporal
        status.requires_justification = requires_just
        status.can_have_notes = True
        status.color_code = color
        status.order = order
        status.is_active = True
        by_code[code] = status
    await db.flush()
    return by_code


async def seed_roles(db: AsyncSession) -> Dict[str, Role]:
    roles: Dict[str, Role] = {}
    for name, permissions in ROLE_PERMISSIONS.items():
        result = await db.execute(select(Role).where(Role.name == name))
        role = result.scalar_one_or_none()
        if role is None:
            role = Role(name=name)
            db.add(role)
        role.permissions = permissions
        roles[name] = role
    await db.flush()
    return roles


async def seed_role_statuses(db: AsyncSession, roles: Dict[str, Role], statuses: Dict[str, AttendanceStatus]) -> int:
    granted = 0
    for role_name, grants in ROLE_STATUSES.items():
        role = roles[role_name]
        for code, (can_create, can_modify) in grants.items():
            status = statuses[code]
            result = await db.execute(
                select(RoleAttendancePermission).where(
                    RoleAttendancePermission.role_id == role.id,
                    RoleAttendancePermission.attendance_status_id == status.id,
                )
            )
            perm = result.scalar_one_or_none()
            if perm is None:
                perm = RoleAttendancePermission(role_id=role.id, attendance_status_id=status.id)
                db.add(perm)
            perm.can_create = can_create
            perm.can_modify = can_modify
            granted += 1
    return granted


async def seed_config(db: AsyncSession) -> bool:
    """Insert the default configuration unless one is already active."""
    result = await db.execute(select(AttendanceConfig.id).where(AttendanceConfig.is_active.is_(True)))
    if result.first() is not None:
        return False
    db.add(AttendanceConfig(**DEFAULT_CONFIG, is_active=True))
    return True


async def seed_attendance_catalog(db: AsyncSession) -> Dict[str, Role]:
    statuses = await seed_statuses(db)
    roles = await seed_roles(db)
    granted = await seed_role_statuses(db, roles, statuses)
    config_created = await seed_config(db)
    await db.commit()
    registry.invalidate()
    logger.info(
        "Attendance catalog seeded: %d statuses, %d roles, %d role grants, config %s",
        len(statuses), len(roles), granted, "created" if config_created else "kept",
    )
    return roles


async def main() -> None:
    """Main entry point for the seed script."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    async with AsyncSessionLocal() as db:
        try:
            await seed_attendance_catalog(db)
        except Exception:
            logger.exception("Error seeding attendance catalog")
            await db.rollback()
            raise
    await dispose_engine()


if __name__ == "__main__":
    asyncio.run(main())
