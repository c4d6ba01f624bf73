"""
Calendar resolver: active window of a cycle and date classification.

A date is BREAK inside a BREAK week, HOLIDAY under a non-recovered holiday,
OUT_OF_RANGE outside every week of the cycle, REGULAR otherwise (EVALUATION
weeks are school days). When a BREAK week and a holiday overlap, the winner is
settings.calendar_break_over_holiday.
"""

from datetime import date
from typing import List, Optional
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from attendance_engine.core.config import settings
from attendance_engine.core.enums import DateClassification, WeekType
from attendance_engine.core.exceptions import (
    CYCLE_ARCHIVED,
    DATE_NOT_INSTRUCTIONAL,
    INVALID_CYCLE,
    NO_ACTIVE_BIMESTER,
    NO_ACTIVE_CYCLE,
    NotFoundError,
    PreconditionError,
)
from attendance_engine.core.models import AcademicWeek, Bimester, Holiday, SchoolCycle

from .schemas import (
    AcademicWeekResponse,
    ActiveWindowResponse,
    BimesterResponse,
    DateClassificationResponse,
    HolidayResponse,
    SchoolCycleResponse,
)


def cycle_to_response(c: SchoolCycle) -> SchoolCycleResponse:
    return SchoolCycleResponse(
        id=c.id,
        name=c.name,
        start_date=c.start_date,
        end_date=c.end_date,
        is_active=c.is_active,
        is_archived=c.is_archived,
        created_at=c.created_at,
        archived_at=c.archived_at,
    )


def bimester_to_response(b: Bimester, weeks_count: int = 0) -> BimesterResponse:
    return BimesterResponse(
        id=b.id,
        cycle_id=b.cycle_id,
        number=b.number,
        name=b.name,
        start_date=b.start_date,
        end_date=b.end_date,
        is_active=b.is_active,
        weeks_count=weeks_count,
    )


def week_to_response(w: AcademicWeek) -> AcademicWeekResponse:
    return AcademicWeekResponse(
        id=w.id,
        bimester_id=w.bimester_id,
        number=w.number,
        start_date=w.start_date,
        end_date=w.end_date,
        week_type=WeekType(w.week_type),
    )


def holiday_to_response(h: Holiday) -> HolidayResponse:
    return HolidayResponse(
        id=h.id,
        cycle_id=h.cycle_id,
        bimester_id=h.bimester_id,
        start_date=h.start_date,
        end_date=h.end_date,
        description=h.description,
        is_recovered=h.is_recovered,
    )


# ----- Cycle lookups -----
async def get_cycle_or_error(db: AsyncSession, cycle_id: UUID) -> SchoolCycle:
    cycle = await db.get(SchoolCycle, cycle_id)
    if not cycle:
        raise NotFoundError(f"School cycle {cycle_id} not found", INVALID_CYCLE)
    return cycle


async def get_active_cycle(db: AsyncSession) -> Optional[SchoolCycle]:
    result = await db.execute(select(SchoolCycle).where(SchoolCycle.is_active.is_(True)))
    return result.scalars().first()


async def require_active_cycle(db: AsyncSession) -> SchoolCycle:
    cycle = await get_active_cycle(db)
    if not cycle:
        raise PreconditionError("No active school cycle", NO_ACTIVE_CYCLE)
    return cycle


def ensure_cycle_writable(cycle: SchoolCycle) -> None:
    if cycle.is_archived:
        raise PreconditionError(f"School cycle '{cycle.name}' is archived and read-only", CYCLE_ARCHIVED)


async def count_weeks(db: AsyncSession, bimester_id: UUID) -> int:
    result = await db.execute(
        select(func.count(AcademicWeek.id)).where(AcademicWeek.bimester_id == bimester_id)
    )
    return int(result.scalar_one())


async def list_weeks(db: AsyncSession, bimester_id: UUID) -> List[AcademicWeek]:
    result = await db.execute(
        select(AcademicWeek).where(AcademicWeek.bimester_id == bimester_id).order_by(AcademicWeek.number)
    )
    return list(result.scalars().all())


# ----- Active window -----
async def resolve_active_window(db: AsyncSession, cycle_id: UUID) -> ActiveWindowResponse:
    """Active bimester of the cycle and its weeks in order."""
    cycle = await get_cycle_or_error(db, cycle_id)
    result = await db.execute(
        select(Bimester)
        .where(Bimester.cycle_id == cycle_id, Bimester.is_active.is_(True))
        .order_by(Bimester.number)
    )
    bimester = result.scalars().first()
    if not bimester:
        raise PreconditionError(f"No active bimester in cycle '{cycle.name}'", NO_ACTIVE_BIMESTER)
    weeks = await list_weeks(db, bimester.id)
    return ActiveWindowResponse(
        cycle=cycle_to_response(cycle),
        active_bimester=bimester_to_response(bimester, len(weeks)),
        weeks=[week_to_response(w) for w in weeks],
    )


# ----- Classification -----
async def _week_for_date(db: AsyncSession, cycle_id: UUID, d: date) -> Optional[AcademicWeek]:
    result = await db.execute(
        select(AcademicWeek)
        .join(Bimester, AcademicWeek.bimester_id == Bimester.id)
        .where(
            Bimester.cycle_id == cycle_id,
            AcademicWeek.start_date <= d,
            AcademicWeek.end_date >= d,
        )
        .order_by(Bimester.number, AcademicWeek.number)
    )
    return result.scalars().first()


async def _holiday_for_date(db: AsyncSession, cycle_id: UUID, d: date) -> Optional[Holiday]:
    result = await db.execute(
        select(Holiday).where(
            Holiday.cycle_id == cycle_id,
            Holiday.start_date <= d,
            Holiday.end_date >= d,
            Holiday.is_recovered.is_(False),
        )
    )
    return result.scalars().first()


async def find_bimester_for_date(db: AsyncSession, cycle_id: UUID, d: date) -> Optional[Bimester]:
    result = await db.execute(
        select(Bimester).where(
            Bimester.cycle_id == cycle_id,
            Bimester.start_date <= d,
            Bimester.end_date >= d,
        )
    )
    return result.scalars().first()


async def bimesters_for_range(db: AsyncSession, cycle_id: UUID, start: date, end: date) -> List[Bimester]:
    """Bimesters of the cycle overlapping [start, end]."""
    result = await db.execute(
        select(Bimester)
        .where(
            Bimester.cycle_id == cycle_id,
            Bimester.start_date <= end,
            Bimester.end_date >= start,
        )
        .order_by(Bimester.number)
    )
    return list(result.scalars().all())


def _classify(week: Optional[AcademicWeek], holiday: Optional[Holiday]) -> DateClassification:
    if week is None:
        return DateClassification.OUT_OF_RANGE
    in_break = week.week_type == WeekType.BREAK.value
    if in_break and (holiday is None or settings.calendar_break_over_holiday):
        return DateClassification.BREAK
    if holiday is not None:
        return DateClassification.HOLIDAY
    return DateClassification.REGULAR


async def resolve_date_context(db: AsyncSession, cycle_id: UUID, d: date) -> DateClassificationResponse:
    """Classification of a date plus the bimester, week and holiday covering it."""
    cycle = await get_cycle_or_error(db, cycle_id)
    if d < cycle.start_date or d > cycle.end_date:
        return DateClassificationResponse(
            cycle_id=cycle_id, date=d, classification=DateClassification.OUT_OF_RANGE
        )
    week = await _week_for_date(db, cycle_id, d)
    holiday = await _holiday_for_date(db, cycle_id, d)
    bimester_id = week.bimester_id if week else None
    if bimester_id is None:
        bimester = await find_bimester_for_date(db, cycle_id, d)
        bimester_id = bimester.id if bimester else None
    return DateClassificationResponse(
        cycle_id=cycle_id,
        date=d,
        classification=_classify(week, holiday),
        bimester_id=bimester_id,
        week_id=week.id if week else None,
        week_type=WeekType(week.week_type) if week else None,
        holiday_id=holiday.id if holiday else None,
        holiday_description=holiday.description if holiday else None,
    )


async def classify_date(db: AsyncSession, cycle_id: UUID, d: date) -> DateClassification:
    return (await resolve_date_context(db, cycle_id, d)).classification


async def ensure_instructional_date(
    db: AsyncSession,
    cycle_id: UUID,
    d: date,
    override: bool = False,
) -> DateClassificationResponse:
    """Reject non-REGULAR dates unless an administrative override is requested."""
    ctx = await resolve_date_context(db, cycle_id, d)
    if ctx.classification != DateClassification.REGULAR and not override:
        detail = f" ({ctx.holiday_description})" if ctx.holiday_description else ""
        raise PreconditionError(
            f"Cannot record attendance on {d}: date is {ctx.classification.value}{detail}",
            DATE_NOT_INSTRUCTIONAL,
        )
    return ctx
