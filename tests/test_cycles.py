from datetime import date

import pytest
from httpx import AsyncClient
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from attendance_engine.api.v1.cycles import service as cycles_service
from attendance_engine.api.v1.cycles.schemas import AcademicWeekCreate, BimesterCreate, HolidayCreate, SchoolCycleCreate
from attendance_engine.core.enums import WeekType
from attendance_engine.core.exceptions import CYCLE_ARCHIVED, ConflictError, PreconditionError, ValidationError
from attendance_engine.core.models import SchoolCycle

from conftest import School, auth_headers


@pytest.mark.asyncio
async def test_create_active_cycle_deactivates_others(db_session: AsyncSession, school: School) -> None:
    created = await cycles_service.create_cycle(
        db_session,
        SchoolCycleCreate(name="2027", start_date=date(2027, 3, 1), end_date=date(2027, 12, 17), is_active=True),
    )
    assert created.is_active is True

    result = await db_session.execute(
        select(SchoolCycle).where(SchoolCycle.is_active.is_(True)).execution_options(populate_existing=True)
    )
    active = result.scalars().all()
    assert [c.id for c in active] == [created.id]


@pytest.mark.asyncio
async def test_duplicate_cycle_name_conflicts(db_session: AsyncSession, school: School) -> None:
    with pytest.raises(ConflictError):
        await cycles_service.create_cycle(
            db_session, SchoolCycleCreate(name="2026", start_date=date(2026, 1, 1), end_date=date(2026, 2, 1))
        )


@pytest.mark.asyncio
async def test_bimester_must_not_overlap(db_session: AsyncSession, school: School) -> None:
    with pytest.raises(ConflictError):
        await cycles_service.create_bimester(
            db_session,
            school.cycle.id,
            BimesterCreate(number=3, start_date=date(2026, 5, 1), end_date=date(2026, 6, 1)),
        )

    with pytest.raises(ValidationError):
        await cycles_service.create_bimester(
            db_session,
            school.cycle.id,
            BimesterCreate(number=3, start_date=date(2026, 12, 1), end_date=date(2027, 1, 31)),
        )

    created = await cycles_service.create_bimester(
        db_session,
        school.cycle.id,
        BimesterCreate(number=3, start_date=date(2026, 7, 20), end_date=date(2026, 9, 25)),
    )
    assert created.number == 3
    assert created.is_active is False


@pytest.mark.asyncio
async def test_weeks_must_be_contiguous(db_session: AsyncSession, school: School) -> None:
    # The seeded first bimester ends its last week on 2026-03-22.
    with pytest.raises(ValidationError):
        await cycles_service.create_week(
            db_session, school.bimester.id, AcademicWeekCreate(start_date=date(2026, 3, 30), end_date=date(2026, 4, 5))
        )

    week = await cycles_service.create_week(
        db_session,
        school.bimester.id,
        AcademicWeekCreate(start_date=date(2026, 3, 23), end_date=date(2026, 3, 29), week_type=WeekType.EVALUATION),
    )
    assert week.number == 4
    assert week.week_type == WeekType.EVALUATION


@pytest.mark.asyncio
async def test_first_week_of_empty_bimester(db_session: AsyncSession, school: School) -> None:
    week = await cycles_service.create_week(
        db_session,
        school.next_bimester.id,
        AcademicWeekCreate(start_date=date(2026, 5, 11), end_date=date(2026, 5, 17)),
    )
    assert week.number == 1


@pytest.mark.asyncio
async def test_single_day_holiday_defaults_end_date(db_session: AsyncSession, school: School) -> None:
    holiday = await cycles_service.create_holiday(
        db_session,
        school.cycle.id,
        HolidayCreate(start_date=date(2026, 6, 29), description="Saint Peter"),
    )
    assert holiday.end_date == date(2026, 6, 29)


@pytest.mark.asyncio
async def test_archived_cycle_rejects_calendar_writes(db_session: AsyncSession, school: School) -> None:
    archived = await cycles_service.archive_cycle(db_session, school.cycle.id)
    assert archived.is_archived is True
    assert archived.is_active is False
    assert archived.archived_at is not None

    with pytest.raises(PreconditionError) as exc:
        await cycles_service.create_holiday(
            db_session, school.cycle.id, HolidayCreate(start_date=date(2026, 6, 29), description="Late")
        )
    assert exc.value.code == CYCLE_ARCHIVED

    with pytest.raises(PreconditionError):
        await cycles_service.activate_cycle(db_session, school.cycle.id)


@pytest.mark.asyncio
async def test_activate_bimester_switches_active(db_session: AsyncSession, school: School) -> None:
    activated = await cycles_service.activate_bimester(db_session, school.next_bimester.id)
    assert activated.is_active is True
    await db_session.refresh(school.bimester)
    assert school.bimester.is_active is False


@pytest.mark.asyncio
async def test_cycle_endpoints_require_calendar_permission(client: AsyncClient, school: School) -> None:
    payload = {"name": "2027", "start_date": "2027-03-01", "end_date": "2027-12-17"}

    response = await client.post("/api/v1/cycles", json=payload, headers=auth_headers(school.users["teacher"]))
    assert response.status_code == 403

    response = await client.post("/api/v1/cycles", json=payload, headers=auth_headers(school.users["admin"]))
    assert response.status_code == 201
    assert response.json()["name"] == "2027"

    response = await client.get("/api/v1/cycles", headers=auth_headers(school.users["admin"]))
    assert response.status_code == 200
    assert {c["name"] for c in response.json()} == {"2026", "2027"}


@pytest.mark.asyncio
async def test_invalid_cycle_range_is_rejected(client: AsyncClient, school: School) -> None:
    response = await client.post(
        "/api/v1/cycles",
        json={"name": "Broken", "start_date": "2027-03-01", "end_date": "2027-02-01"},
        headers=auth_headers(school.users["admin"]),
    )
    assert response.status_code == 422
