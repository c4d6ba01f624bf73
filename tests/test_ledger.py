import asyncio
from datetime import date, timedelta
from uuid import uuid4

import pytest
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from attendance_engine.api.v1.attendance import service as ledger
from attendance_engine.api.v1.attendance.schemas import AttendanceUpdate, AttendanceUpsert
from attendance_engine.core.aggregation import ReportKey, report_queue
from attendance_engine.core.enums import ChangeType, EnrollmentStatus, LedgerOutcome, WriteMode
from attendance_engine.core.exceptions import (
    ATTENDANCE_EXISTS,
    CHANGE_REASON_REQUIRED,
    CYCLE_ARCHIVED,
    DATE_NOT_INSTRUCTIONAL,
    ENROLLMENT_INACTIVE,
    FUTURE_DATE,
    NOTES_REQUIRED,
    STATUS_NOT_ALLOWED,
    AuthorizationError,
    ConflictError,
    PreconditionError,
    ValidationError,
)
from attendance_engine.core.models import Enrollment, SchoolCycle, StudentAttendance

from conftest import HOLIDAY_DATE, WEEK1_DAY1, School

WEEK1_DAY2 = date(2026, 3, 3)


@pytest.mark.parametrize(
    "arrival, expected",
    [
        (None, 0),
        ("08:00", 0),
        ("08:30", 0),
        ("08:40", 0),  # late, but under the tardy grace
        ("08:45", 15),
        ("09:10", 40),
    ],
)
def test_calculate_minutes_late(arrival, expected) -> None:
    assert ledger.calculate_minutes_late(arrival, "08:30", 15) == expected


def test_report_keys_for() -> None:
    enrollment_id, bimester_id, course_id = uuid4(), uuid4(), uuid4()
    assert ledger.report_keys_for(enrollment_id, None, course_id) == []
    assert ledger.report_keys_for(enrollment_id, bimester_id, None) == [ReportKey(enrollment_id, bimester_id)]
    assert ledger.report_keys_for(enrollment_id, bimester_id, course_id) == [
        ReportKey(enrollment_id, bimester_id),
        ReportKey(enrollment_id, bimester_id, course_id),
    ]


def _upsert(school: School, **overrides) -> AttendanceUpsert:
    data = {
        "enrollment_id": school.enrollments[0].id,
        "date": WEEK1_DAY1,
        "status_code": "P",
    }
    data.update(overrides)
    return AttendanceUpsert(**data)


@pytest.mark.asyncio
async def test_create_day_level_record(db_session: AsyncSession, school: School) -> None:
    result = await ledger.upsert(db_session, school.principal("admin"), _upsert(school))

    assert result.outcome == LedgerOutcome.CREATED
    assert result.record.course_assignment_id is None
    assert result.report_keys == [ReportKey(school.enrollments[0].id, school.bimester.id)]
    assert report_queue.pending == 1

    changes = await ledger.list_changes(db_session, result.record.id)
    assert len(changes) == 1
    assert changes[0].change_type == ChangeType.CREATE
    assert changes[0].status_code_before is None
    assert changes[0].status_code_after == "P"


@pytest.mark.asyncio
async def test_course_record_queues_overall_and_course_reports(db_session: AsyncSession, school: School) -> None:
    result = await ledger.upsert(
        db_session, school.principal("teacher"), _upsert(school, course_assignment_id=school.math.id)
    )
    assert result.outcome == LedgerOutcome.CREATED
    assert set(result.report_keys) == {
        ReportKey(school.enrollments[0].id, school.bimester.id),
        ReportKey(school.enrollments[0].id, school.bimester.id, school.math.course_id),
    }


@pytest.mark.asyncio
async def test_identical_write_is_unchanged(db_session: AsyncSession, school: School) -> None:
    admin = school.principal("admin")
    first = await ledger.upsert(db_session, admin, _upsert(school, notes="on time"))
    second = await ledger.upsert(db_session, admin, _upsert(school, notes="  on time "))

    assert second.outcome == LedgerOutcome.UNCHANGED
    assert second.record.id == first.record.id
    assert second.report_keys == []
    assert len(await ledger.list_changes(db_session, first.record.id)) == 1


@pytest.mark.asyncio
async def test_update_requires_change_reason(db_session: AsyncSession, school: School) -> None:
    admin = school.principal("admin")
    created = await ledger.upsert(db_session, admin, _upsert(school))

    with pytest.raises(ValidationError) as exc:
        await ledger.upsert(db_session, admin, _upsert(school, status_code="I"))
    assert exc.value.code == CHANGE_REASON_REQUIRED

    updated = await ledger.upsert(db_session, admin, _upsert(school, status_code="I", change_reason="Left early"))
    assert updated.outcome == LedgerOutcome.UPDATED
    assert updated.record.id == created.record.id

    changes = await ledger.list_changes(db_session, created.record.id)
    assert [c.change_type for c in changes] == [ChangeType.CREATE, ChangeType.UPDATE]
    assert changes[1].status_code_before == "P"
    assert changes[1].status_code_after == "I"
    assert changes[1].change_reason == "Left early"


@pytest.mark.asyncio
async def test_create_only_conflicts_on_existing_record(db_session: AsyncSession, school: School) -> None:
    admin = school.principal("admin")
    await ledger.upsert(db_session, admin, _upsert(school))

    with pytest.raises(ConflictError) as exc:
        await ledger.upsert(db_session, admin, _upsert(school, status_code="I", mode=WriteMode.CREATE_ONLY))
    assert exc.value.code == ATTENDANCE_EXISTS


@pytest.mark.asyncio
async def test_holiday_needs_backfill_override(db_session: AsyncSession, school: School) -> None:
    with pytest.raises(PreconditionError) as exc:
        await ledger.upsert(db_session, school.principal("coordinator"), _upsert(school, date=HOLIDAY_DATE))
    assert exc.value.code == DATE_NOT_INSTRUCTIONAL

    # Teachers hold no backfill permission.
    with pytest.raises(AuthorizationError):
        await ledger.upsert(
            db_session, school.principal("teacher"), _upsert(school, date=HOLIDAY_DATE, override_calendar=True)
        )

    result = await ledger.upsert(
        db_session, school.principal("coordinator"), _upsert(school, date=HOLIDAY_DATE, override_calendar=True)
    )
    assert result.outcome == LedgerOutcome.CREATED


@pytest.mark.asyncio
async def test_inactive_enrollment_is_rejected(db_session: AsyncSession, school: School) -> None:
    enrollment = await db_session.get(Enrollment, school.enrollments[0].id)
    enrollment.status = EnrollmentStatus.INACTIVE.value
    await db_session.commit()

    with pytest.raises(PreconditionError) as exc:
        await ledger.upsert(db_session, school.principal("admin"), _upsert(school))
    assert exc.value.code == ENROLLMENT_INACTIVE


@pytest.mark.asyncio
async def test_archived_cycle_is_read_only(db_session: AsyncSession, school: School) -> None:
    cycle = await db_session.get(SchoolCycle, school.cycle.id)
    cycle.is_archived = True
    await db_session.commit()

    with pytest.raises(PreconditionError) as exc:
        await ledger.upsert(db_session, school.principal("admin"), _upsert(school))
    assert exc.value.code == CYCLE_ARCHIVED


@pytest.mark.asyncio
async def test_date_before_enrollment_is_rejected(db_session: AsyncSession, school: School) -> None:
    enrollment = await db_session.get(Enrollment, school.enrollments[0].id)
    enrollment.date_enrolled = date(2026, 3, 9)
    await db_session.commit()

    with pytest.raises(ValidationError):
        await ledger.upsert(db_session, school.principal("admin"), _upsert(school, date=WEEK1_DAY2))


@pytest.mark.asyncio
async def test_future_date_is_rejected_even_with_override(db_session: AsyncSession, school: School) -> None:
    tomorrow = date.today() + timedelta(days=1)
    coordinator = school.principal("coordinator")
    for override in (False, True):
        with pytest.raises(ValidationError) as exc:
            await ledger.upsert(db_session, coordinator, _upsert(school, date=tomorrow, override_calendar=override))
        assert exc.value.code == FUTURE_DATE

    created = await ledger.upsert(db_session, coordinator, _upsert(school))
    record = await db_session.get(StudentAttendance, created.record.id)
    record.date = tomorrow
    await db_session.commit()
    with pytest.raises(ValidationError) as exc:
        await ledger.update_attendance(
            db_session, coordinator, record.id, AttendanceUpdate(status_code="I", change_reason="Typo")
        )
    assert exc.value.code == FUTURE_DATE


@pytest.mark.asyncio
async def test_teacher_scope_is_own_course_assignments(db_session: AsyncSession, school: School) -> None:
    teacher = school.principal("teacher")

    with pytest.raises(AuthorizationError):
        await ledger.upsert(db_session, teacher, _upsert(school, course_assignment_id=school.language.id))

    result = await ledger.upsert(db_session, teacher, _upsert(school, course_assignment_id=school.math.id))
    assert result.outcome == LedgerOutcome.CREATED

    # Homeroom teacher of the section may write day-level rows; the other teacher may not.
    result = await ledger.upsert(db_session, teacher, _upsert(school))
    assert result.outcome == LedgerOutcome.CREATED
    with pytest.raises(AuthorizationError):
        await ledger.upsert(db_session, school.principal("other_teacher"), _upsert(school, date=WEEK1_DAY2))


@pytest.mark.asyncio
async def test_role_status_restrictions(db_session: AsyncSession, school: School) -> None:
    with pytest.raises(AuthorizationError) as exc:
        await ledger.upsert(
            db_session, school.principal("teacher"), _upsert(school, status_code="E")
        )
    assert exc.value.code == STATUS_NOT_ALLOWED


@pytest.mark.asyncio
async def test_notes_required_for_configured_states(db_session: AsyncSession, school: School) -> None:
    coordinator = school.principal("coordinator")
    with pytest.raises(ValidationError) as exc:
        await ledger.upsert(db_session, coordinator, _upsert(school, status_code="IJ", notes="   "))
    assert exc.value.code == NOTES_REQUIRED

    result = await ledger.upsert(db_session, coordinator, _upsert(school, status_code="IJ", notes="Medical"))
    assert result.record.notes == "Medical"


@pytest.mark.asyncio
async def test_minutes_late_only_for_temporal_statuses(db_session: AsyncSession, school: School) -> None:
    admin = school.principal("admin")
    tardy = await ledger.upsert(db_session, admin, _upsert(school, status_code="TI", arrival_time="08:50"))
    assert tardy.record.minutes_late == 20

    present = await ledger.upsert(
        db_session,
        admin,
        _upsert(school, enrollment_id=school.enrollments[1].id, status_code="P", arrival_time="08:50"),
    )
    assert present.record.minutes_late is None


@pytest.mark.asyncio
async def test_update_by_id_keeps_unset_fields(db_session: AsyncSession, school: School) -> None:
    admin = school.principal("admin")
    created = await ledger.upsert(
        db_session, admin, _upsert(school, status_code="TI", arrival_time="08:50", notes="Bus")
    )

    result = await ledger.update_attendance(
        db_session, admin, created.record.id, AttendanceUpdate(status_code="P", change_reason="Clock was wrong")
    )
    assert result.outcome == LedgerOutcome.UPDATED
    assert result.record.notes == "Bus"
    assert result.record.arrival_time == "08:50"
    assert result.record.minutes_late is None

    with pytest.raises(ValidationError) as exc:
        await ledger.update_attendance(db_session, admin, created.record.id, AttendanceUpdate(notes="Other"))
    assert exc.value.code == CHANGE_REASON_REQUIRED


@pytest.mark.asyncio
async def test_history_includes_change_log(db_session: AsyncSession, school: School) -> None:
    admin = school.principal("admin")
    await ledger.upsert(db_session, admin, _upsert(school))
    await ledger.upsert(db_session, admin, _upsert(school, status_code="I", change_reason="Correction"))
    await ledger.upsert(db_session, admin, _upsert(school, date=WEEK1_DAY2))

    history = await ledger.get_student_attendance(db_session, school.enrollments[0].id)
    assert history.total == 2
    assert [item.date for item in history.items] == [WEEK1_DAY2, WEEK1_DAY1]
    assert [c.change_type for c in history.items[1].changes] == [ChangeType.CREATE, ChangeType.UPDATE]

    window = await ledger.get_student_attendance(
        db_session, school.enrollments[0].id, start_date=WEEK1_DAY2, end_date=WEEK1_DAY2
    )
    assert window.total == 1


@pytest.mark.asyncio
async def test_concurrent_writes_produce_one_record(
    test_sessionmaker: async_sessionmaker, school: School
) -> None:
    admin = school.principal("admin")

    async def write():
        async with test_sessionmaker() as session:
            return await ledger.upsert(session, admin, _upsert(school))

    results = await asyncio.gather(write(), write())
    outcomes = sorted(r.outcome.value for r in results)
    assert outcomes in (["CREATED", "UNCHANGED"], ["CREATED", "SKIPPED"])

    async with test_sessionmaker() as session:
        count = await session.execute(
            select(func.count(StudentAttendance.id)).where(StudentAttendance.enrollment_id == school.enrollments[0].id)
        )
        assert count.scalar_one() == 1
