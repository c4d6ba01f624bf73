"""School cycle administration: cycles, bimesters, academic weeks and holidays."""

from datetime import datetime, timedelta
from typing import List
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from attendance_engine.api.v1.calendar import service as calendar_service
from attendance_engine.api.v1.calendar.schemas import (
    AcademicWeekResponse,
    BimesterResponse,
    HolidayResponse,
    SchoolCycleResponse,
)
from attendance_engine.core.app_logger import get_logger
from attendance_engine.core.exceptions import ConflictError, NotFoundError, ValidationError
from attendance_engine.core.models import AcademicWeek, Bimester, Holiday, SchoolCycle

from .schemas import AcademicWeekCreate, BimesterCreate, HolidayCreate, SchoolCycleCreate

logger = get_logger("cycles")


async def create_cycle(db: AsyncSession, payload: SchoolCycleCreate) -> SchoolCycleResponse:
    """Create a cycle. If is_active=true, every other cycle is deactivated in the same transaction."""
    existing = await db.execute(select(SchoolCycle).where(SchoolCycle.name == payload.name.strip()))
    if existing.scalar_one_or_none():
        raise ConflictError(f"School cycle '{payload.name}' already exists")
    if payload.is_active:
        await db.execute(update(SchoolCycle).values(is_active=False))
    cycle = SchoolCycle(
        name=payload.name.strip(),
        start_date=payload.start_date,
        end_date=payload.end_date,
        is_active=payload.is_active,
        is_archived=False,
    )
    db.add(cycle)
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise ConflictError(f"School cycle '{payload.name}' already exists")
    await db.refresh(cycle)
    return calendar_service.cycle_to_response(cycle)


async def list_cycles(db: AsyncSession, include_archived: bool = True) -> List[SchoolCycleResponse]:
    stmt = select(SchoolCycle)
    if not include_archived:
        stmt = stmt.where(SchoolCycle.is_archived.is_(False))
    result = await db.execute(stmt.order_by(SchoolCycle.start_date.desc()))
    return [calendar_service.cycle_to_response(c) for c in result.scalars().all()]


async def activate_cycle(db: AsyncSession, cycle_id: UUID) -> SchoolCycleResponse:
    """Make this cycle the only active one."""
    cycle = await calendar_service.get_cycle_or_error(db, cycle_id)
    calendar_service.ensure_cycle_writable(cycle)
    await db.execute(update(SchoolCycle).values(is_active=False))
    cycle.is_active = True
    await db.commit()
    await db.refresh(cycle)
    logger.info("Cycle %s activated", cycle.name)
    return calendar_service.cycle_to_response(cycle)


async def archive_cycle(db: AsyncSession, cycle_id: UUID) -> SchoolCycleResponse:
    """Archive a cycle. It becomes read-only and stops being the active cycle."""
    cycle = await calendar_service.get_cycle_or_error(db, cycle_id)
    calendar_service.ensure_cycle_writable(cycle)
    cycle.is_archived = True
    cycle.is_active = False
    cycle.archived_at = datetime.utcnow()
    await db.commit()
    await db.refresh(cycle)
    logger.info("Cycle %s archived", cycle.name)
    return calendar_service.cycle_to_response(cycle)


# ----- Bimesters -----
async def create_bimester(db: AsyncSession, cycle_id: UUID, payload: BimesterCreate) -> BimesterResponse:
    cycle = await calendar_service.get_cycle_or_error(db, cycle_id)
    calendar_service.ensure_cycle_writable(cycle)
    if payload.start_date < cycle.start_date or payload.end_date > cycle.end_date:
        raise ValidationError("Bimester dates must fall inside the school cycle")
    overlapping = await calendar_service.bimesters_for_range(db, cycle_id, payload.start_date, payload.end_date)
    if overlapping:
        raise ConflictError(f"Bimester overlaps bimester {overlapping[0].number}")
    if payload.is_active:
        await db.execute(update(Bimester).where(Bimester.cycle_id == cycle_id).values(is_active=False))
    bimester = Bimester(
        cycle_id=cycle_id,
        number=payload.number,
        name=payload.name,
        start_date=payload.start_date,
        end_date=payload.end_date,
        is_active=payload.is_active,
    )
    db.add(bimester)
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise ConflictError(f"Bimester {payload.number} already exists in this cycle")
    await db.refresh(bimester)
    return calendar_service.bimester_to_response(bimester)


async def _get_bimester_or_error(db: AsyncSession, bimester_id: UUID) -> Bimester:
    bimester = await db.get(Bimester, bimester_id)
    if not bimester:
        raise NotFoundError("Bimester not found")
    return bimester


async def activate_bimester(db: AsyncSession, bimester_id: UUID) -> BimesterResponse:
    """Flag this bimester active; the rest of its cycle's bimesters are deactivated."""
    bimester = await _get_bimester_or_error(db, bimester_id)
    cycle = await calendar_service.get_cycle_or_error(db, bimester.cycle_id)
    calendar_service.ensure_cycle_writable(cycle)
    await db.execute(update(Bimester).where(Bimester.cycle_id == bimester.cycle_id).values(is_active=False))
    bimester.is_active = True
    await db.commit()
    await db.refresh(bimester)
    return calendar_service.bimester_to_response(bimester, await calendar_service.count_weeks(db, bimester.id))


# ----- Weeks -----
async def create_week(db: AsyncSession, bimester_id: UUID, payload: AcademicWeekCreate) -> AcademicWeekResponse:
    """Append the next week. Weeks stay contiguous, non-overlapping and inside the bimester."""
    bimester = await _get_bimester_or_error(db, bimester_id)
    cycle = await calendar_service.get_cycle_or_error(db, bimester.cycle_id)
    calendar_service.ensure_cycle_writable(cycle)
    if payload.start_date < bimester.start_date or payload.end_date > bimester.end_date:
        raise ValidationError("Week dates must fall inside the bimester")
    weeks = await calendar_service.list_weeks(db, bimester_id)
    if weeks:
        last = weeks[-1]
        expected_start = last.end_date + timedelta(days=1)
        if payload.start_date != expected_start:
            raise ValidationError(
                f"Week must start on {expected_start} (the day after week {last.number} ends)"
            )
    week = AcademicWeek(
        bimester_id=bimester_id,
        number=(weeks[-1].number + 1) if weeks else 1,
        start_date=payload.start_date,
        end_date=payload.end_date,
        week_type=payload.week_type.value,
    )
    db.add(week)
    await db.commit()
    await db.refresh(week)
    return calendar_service.week_to_response(week)


# ----- Holidays -----
async def create_holiday(db: AsyncSession, cycle_id: UUID, payload: HolidayCreate) -> HolidayResponse:
    cycle = await calendar_service.get_cycle_or_error(db, cycle_id)
    calendar_service.ensure_cycle_writable(cycle)
    end_date = payload.end_date or payload.start_date
    if payload.start_date < cycle.start_date or end_date > cycle.end_date:
        raise ValidationError("Holiday must fall inside the school cycle")
    if payload.bimester_id is not None:
        bimester = await _get_bimester_or_error(db, payload.bimester_id)
        if bimester.cycle_id != cycle_id:
            raise ValidationError("Bimester does not belong to this cycle")
    holiday = Holiday(
        cycle_id=cycle_id,
        bimester_id=payload.bimester_id,
        start_date=payload.start_date,
        end_date=end_date,
        description=payload.description.strip(),
        is_recovered=payload.is_recovered,
    )
    db.add(holiday)
    await db.commit()
    await db.refresh(holiday)
    return calendar_service.holiday_to_response(holiday)
