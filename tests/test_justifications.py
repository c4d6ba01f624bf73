from datetime import date, datetime, timedelta
from uuid import uuid4

import pytest
from httpx import AsyncClient
from sqlalchemy import select
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from attendance_engine.api.v1.attendance import service as ledger
from attendance_engine.api.v1.attendance.schemas import AttendanceUpsert
from attendance_engine.api.v1.attendance_statuses import service as registry
from attendance_engine.api.v1.attendance_statuses.schemas import AttendanceConfigSave, AttendanceStatusUpdate
from attendance_engine.api.v1.justifications import service as justifications
from attendance_engine.api.v1.justifications.schemas import JustificationCreate
from attendance_engine.core.aggregation import ReportKey, report_queue
from attendance_engine.core.enums import ChangeType, JustificationStatus
from attendance_engine.core.exceptions import (
    CYCLE_ARCHIVED,
    INVALID_TRANSITION,
    JUSTIFIED_STATUS_UNAVAILABLE,
    REJECTION_REASON_REQUIRED,
    TOO_MANY_ITEMS,
    AuthorizationError,
    ConflictError,
    PreconditionError,
    ValidationError,
)
from attendance_engine.core.models import SchoolCycle, StudentAttendance

from conftest import WEEK1_DAY1, School, auth_headers

DAY2 = date(2026, 3, 3)
DAY3 = date(2026, 3, 4)
TODAY = date(2026, 3, 6)


def _create(school: School, start: date = WEEK1_DAY1, end: date = DAY3, enrollment_index: int = 0) -> JustificationCreate:
    return JustificationCreate(
        enrollment_id=school.enrollments[enrollment_index].id,
        start_date=start,
        end_date=end,
        type="medical",
        reason="Flu",
    )


async def _record_week(db: AsyncSession, school: School) -> None:
    """Day 1 absent (day-level), day 2 tardy in mathematics, day 3 present."""
    admin = school.principal("admin")
    enrollment_id = school.enrollments[0].id
    await ledger.upsert(db, admin, AttendanceUpsert(enrollment_id=enrollment_id, date=WEEK1_DAY1, status_code="I"))
    await ledger.upsert(
        db,
        admin,
        AttendanceUpsert(
            enrollment_id=enrollment_id,
            date=DAY2,
            course_assignment_id=school.math.id,
            status_code="TI",
            arrival_time="08:50",
        ),
    )
    await ledger.upsert(db, admin, AttendanceUpsert(enrollment_id=enrollment_id, date=DAY3, status_code="P"))
    await report_queue.process_pending()


async def _records_by_date(db: AsyncSession, school: School):
    result = await db.execute(
        select(StudentAttendance)
        .where(StudentAttendance.enrollment_id == school.enrollments[0].id)
        .execution_options(populate_existing=True)
    )
    return {r.date: r for r in result.scalars().all()}


@pytest.mark.asyncio
async def test_submit_creates_pending(db_session: AsyncSession, school: School) -> None:
    created = await justifications.submit(db_session, school.principal("teacher"), _create(school), today=TODAY)

    assert created.status == JustificationStatus.pending
    assert created.submitted_by == school.users["teacher"].id
    assert created.auto_approved is False


@pytest.mark.asyncio
async def test_submit_outside_window_is_rejected(db_session: AsyncSession, school: School) -> None:
    with pytest.raises(ValidationError):
        await justifications.submit(
            db_session, school.principal("teacher"), _create(school), today=WEEK1_DAY1 + timedelta(days=366)
        )


@pytest.mark.asyncio
async def test_span_is_capped_by_max_days(db_session: AsyncSession, school: School) -> None:
    await registry.save_config(db_session, AttendanceConfigSave(max_justification_days=5))

    with pytest.raises(ValidationError):
        await justifications.submit(
            db_session, school.principal("teacher"), _create(school, end=date(2026, 3, 9)), today=TODAY
        )


@pytest.mark.asyncio
async def test_overlapping_justifications_conflict(db_session: AsyncSession, school: School) -> None:
    teacher = school.principal("teacher")
    await justifications.submit(db_session, teacher, _create(school), today=TODAY)

    with pytest.raises(ConflictError):
        await justifications.submit(db_session, teacher, _create(school, start=DAY3, end=TODAY), today=TODAY)

    # Another student is unaffected.
    other = await justifications.submit(db_session, teacher, _create(school, enrollment_index=1), today=TODAY)
    assert other.status == JustificationStatus.pending


@pytest.mark.asyncio
async def test_submit_on_archived_cycle(db_session: AsyncSession, school: School) -> None:
    cycle = await db_session.get(SchoolCycle, school.cycle.id)
    cycle.is_archived = True
    await db_session.commit()

    with pytest.raises(PreconditionError) as exc:
        await justifications.submit(db_session, school.principal("teacher"), _create(school), today=TODAY)
    assert exc.value.code == CYCLE_ARCHIVED


@pytest.mark.asyncio
async def test_approval_remaps_negative_records(db_session: AsyncSession, school: School) -> None:
    await _record_week(db_session, school)
    pending = await justifications.submit(db_session, school.principal("teacher"), _create(school), today=TODAY)

    approved = await justifications.approve(db_session, school.principal("coordinator"), pending.id)
    assert approved.status == JustificationStatus.approved
    assert approved.approved_by == school.users["coordinator"].id
    assert approved.records_updated == 3

    records = await _records_by_date(db_session, school)
    status_codes = {d: (await registry.get_status_by_id(db_session, r.attendance_status_id)).code for d, r in records.items()}
    assert status_codes == {WEEK1_DAY1: "IJ", DAY2: "TJ", DAY3: "P"}
    assert records[WEEK1_DAY1].has_justification is True
    assert records[WEEK1_DAY1].justification_id == pending.id
    # Non-negative records keep their status but are still linked to the justification.
    assert records[DAY3].has_justification is True
    assert records[DAY3].justification_id == pending.id

    changes = await ledger.list_changes(db_session, records[WEEK1_DAY1].id)
    justified = [c for c in changes if c.change_type == ChangeType.JUSTIFICATION]
    assert len(justified) == 1
    assert justified[0].status_code_before == "I"
    assert justified[0].status_code_after == "IJ"
    assert justified[0].justification_added_id == pending.id

    changes = await ledger.list_changes(db_session, records[DAY3].id)
    justified = [c for c in changes if c.change_type == ChangeType.JUSTIFICATION]
    assert [(c.status_code_before, c.status_code_after) for c in justified] == [("P", "P")]


@pytest.mark.asyncio
async def test_approval_with_retired_mapped_status_changes_nothing(db_session: AsyncSession, school: School) -> None:
    await _record_week(db_session, school)
    pending = await justifications.submit(db_session, school.principal("teacher"), _create(school), today=TODAY)
    tj = await registry.get_status_by_code(db_session, "TJ")
    await registry.update_status(db_session, tj.id, AttendanceStatusUpdate(is_active=False))

    with pytest.raises(PreconditionError) as exc:
        await justifications.approve(db_session, school.principal("coordinator"), pending.id)
    assert exc.value.code == JUSTIFIED_STATUS_UNAVAILABLE
    await db_session.rollback()

    # Day 1 maps to an active status, yet it is left untouched as well.
    records = await _records_by_date(db_session, school)
    status_codes = {d: (await registry.get_status_by_id(db_session, r.attendance_status_id)).code for d, r in records.items()}
    assert status_codes == {WEEK1_DAY1: "I", DAY2: "TI", DAY3: "P"}
    assert not any(r.has_justification for r in records.values())
    assert all(r.justification_id is None for r in records.values())

    stored = await justifications.get_justification(db_session, pending.id)
    assert stored.status == JustificationStatus.pending


@pytest.mark.asyncio
async def test_approval_queues_affected_reports(db_session: AsyncSession, school: School) -> None:
    await _record_week(db_session, school)
    pending = await justifications.submit(db_session, school.principal("teacher"), _create(school), today=TODAY)
    await justifications.approve(db_session, school.principal("coordinator"), pending.id)

    enrollment_id = school.enrollments[0].id
    assert set(report_queue._pending) == {
        ReportKey(enrollment_id, school.bimester.id),
        ReportKey(enrollment_id, school.bimester.id, school.math.course_id),
    }


@pytest.mark.asyncio
async def test_approval_without_attendance_update(db_session: AsyncSession, school: School) -> None:
    await _record_week(db_session, school)
    pending = await justifications.submit(db_session, school.principal("teacher"), _create(school), today=TODAY)

    approved = await justifications.approve(
        db_session, school.principal("coordinator"), pending.id, auto_update_attendance=False
    )
    assert approved.records_updated == 0
    records = await _records_by_date(db_session, school)
    assert records[WEEK1_DAY1].has_justification is False


@pytest.mark.asyncio
async def test_only_pending_can_transition(db_session: AsyncSession, school: School) -> None:
    coordinator = school.principal("coordinator")
    pending = await justifications.submit(db_session, school.principal("teacher"), _create(school), today=TODAY)
    await justifications.approve(db_session, coordinator, pending.id)

    with pytest.raises(PreconditionError) as exc:
        await justifications.approve(db_session, coordinator, pending.id)
    assert exc.value.code == INVALID_TRANSITION

    with pytest.raises(PreconditionError):
        await justifications.reject(db_session, coordinator, pending.id, "Too late")


@pytest.mark.asyncio
async def test_teacher_cannot_approve(db_session: AsyncSession, school: School) -> None:
    pending = await justifications.submit(db_session, school.principal("teacher"), _create(school), today=TODAY)
    with pytest.raises(AuthorizationError):
        await justifications.approve(db_session, school.principal("teacher"), pending.id)


@pytest.mark.asyncio
async def test_reject_requires_reason_and_leaves_attendance(db_session: AsyncSession, school: School) -> None:
    await _record_week(db_session, school)
    coordinator = school.principal("coordinator")
    pending = await justifications.submit(db_session, school.principal("teacher"), _create(school), today=TODAY)

    with pytest.raises(ValidationError) as exc:
        await justifications.reject(db_session, coordinator, pending.id, "  ")
    assert exc.value.code == REJECTION_REASON_REQUIRED

    rejected = await justifications.reject(db_session, coordinator, pending.id, "No medical certificate")
    assert rejected.status == JustificationStatus.rejected
    assert rejected.rejection_reason == "No medical certificate"

    records = await _records_by_date(db_session, school)
    status = await registry.get_status_by_id(db_session, records[WEEK1_DAY1].attendance_status_id)
    assert status.code == "I"
    assert records[WEEK1_DAY1].has_justification is False

    # A rejected range may be justified again.
    again = await justifications.submit(db_session, school.principal("teacher"), _create(school), today=TODAY)
    assert again.status == JustificationStatus.pending


@pytest.mark.asyncio
async def test_bulk_approve_reports_each_item(db_session: AsyncSession, school: School) -> None:
    teacher = school.principal("teacher")
    first = await justifications.submit(db_session, teacher, _create(school, enrollment_index=0), today=TODAY)
    second = await justifications.submit(db_session, teacher, _create(school, enrollment_index=1), today=TODAY)
    missing = uuid4()

    result = await justifications.bulk_approve(
        db_session, school.principal("coordinator"), [first.id, second.id, missing]
    )
    assert result.succeeded == 2
    assert result.failed == 1
    failed = [i for i in result.items if not i.ok]
    assert failed[0].justification_id == missing
    assert failed[0].error["kind"] == "NOT_FOUND"


@pytest.mark.asyncio
async def test_bulk_approve_isolates_store_errors(
    db_session: AsyncSession, school: School, monkeypatch: pytest.MonkeyPatch
) -> None:
    teacher = school.principal("teacher")
    first = await justifications.submit(db_session, teacher, _create(school, enrollment_index=0), today=TODAY)
    second = await justifications.submit(db_session, teacher, _create(school, enrollment_index=1), today=TODAY)
    real_approve = justifications.approve

    async def approve_or_fail(db, user, justification_id, auto_update_attendance=True):
        if justification_id == first.id:
            raise OperationalError("UPDATE student_justifications", {}, Exception("database is locked"))
        return await real_approve(db, user, justification_id, auto_update_attendance)

    monkeypatch.setattr(justifications, "approve", approve_or_fail)
    result = await justifications.bulk_approve(db_session, school.principal("coordinator"), [first.id, second.id])

    assert result.succeeded == 1
    assert result.failed == 1
    assert result.items[0].error["kind"] == "STORE"
    assert result.items[0].error["retryable"] is True
    assert result.items[1].ok is True
    assert (await justifications.get_justification(db_session, first.id)).status == JustificationStatus.pending
    assert (await justifications.get_justification(db_session, second.id)).status == JustificationStatus.approved


@pytest.mark.asyncio
async def test_bulk_reject_limits(db_session: AsyncSession, school: School) -> None:
    coordinator = school.principal("coordinator")
    with pytest.raises(ValidationError) as exc:
        await justifications.bulk_reject(db_session, coordinator, [uuid4() for _ in range(51)], "Duplicate")
    assert exc.value.code == TOO_MANY_ITEMS

    with pytest.raises(ValidationError) as exc:
        await justifications.bulk_reject(db_session, coordinator, [uuid4()], None)
    assert exc.value.code == REJECTION_REASON_REQUIRED


@pytest.mark.asyncio
async def test_auto_approval_sweep(db_session: AsyncSession, school: School) -> None:
    await _record_week(db_session, school)
    pending = await justifications.submit(db_session, school.principal("teacher"), _create(school), today=TODAY)

    disabled = await justifications.sweep_auto_approvals(db_session)
    assert disabled.enabled is False

    await registry.save_config(
        db_session,
        AttendanceConfigSave(
            auto_approve_justification=True,
            auto_approval_after_days=7,
            justified_status_map={"I": "IJ", "TI": "TJ"},
        ),
    )
    too_soon = await justifications.sweep_auto_approvals(db_session, now=datetime.utcnow() + timedelta(days=1))
    assert too_soon.enabled is True
    assert too_soon.approved == 0

    swept = await justifications.sweep_auto_approvals(db_session, now=datetime.utcnow() + timedelta(days=8))
    assert swept.approved == 1
    assert swept.justification_ids == [pending.id]

    approved = await justifications.get_justification(db_session, pending.id)
    assert approved.status == JustificationStatus.approved
    assert approved.auto_approved is True
    assert approved.approved_by is None


@pytest.mark.asyncio
async def test_justification_endpoints(client: AsyncClient, school: School) -> None:
    admin_headers = auth_headers(school.users["admin"])
    # The API resolves "today" from the clock; widen the window so the fixed calendar stays valid.
    response = await client.put(
        "/api/v1/attendance-statuses/config",
        json={"max_justification_days": 36500, "justified_status_map": {"I": "IJ", "TI": "TJ"}},
        headers=admin_headers,
    )
    assert response.status_code == 200

    response = await client.post(
        "/api/v1/justifications",
        json={
            "enrollment_id": str(school.enrollments[0].id),
            "start_date": WEEK1_DAY1.isoformat(),
            "end_date": DAY3.isoformat(),
            "type": "medical",
            "reason": "Flu",
        },
        headers=auth_headers(school.users["teacher"]),
    )
    assert response.status_code == 201
    justification_id = response.json()["id"]

    response = await client.get(
        "/api/v1/justifications", params={"status": "pending"}, headers=auth_headers(school.users["coordinator"])
    )
    assert response.status_code == 200
    assert response.headers["X-Total-Count"] == "1"

    response = await client.post(
        f"/api/v1/justifications/{justification_id}/approve",
        json={"auto_update_attendance": True},
        headers=auth_headers(school.users["teacher"]),
    )
    assert response.status_code == 403

    response = await client.post(
        f"/api/v1/justifications/{justification_id}/reject",
        json={},
        headers=auth_headers(school.users["coordinator"]),
    )
    assert response.status_code == 400
    assert response.json()["detail"]["code"] == REJECTION_REASON_REQUIRED

    response = await client.post(
        f"/api/v1/justifications/{justification_id}/approve",
        json={"auto_update_attendance": True},
        headers=auth_headers(school.users["coordinator"]),
    )
    assert response.status_code == 200
    assert response.json()["status"] == "approved"
