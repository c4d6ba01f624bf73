"""
Attendance ledger: the single write path for attendance records.

A write is checked against permissions, the enrollment, the calendar and the
status registry, serialized per (enrollment, date, course assignment), logged to
the change table, and after commit the affected report keys are queued for
recalculation.
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import List, NamedTuple, Optional
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from attendance_engine.api.v1.attendance_statuses import service as registry
from attendance_engine.api.v1.attendance_statuses.schemas import AttendanceConfigResponse, AttendanceStatusResponse
from attendance_engine.api.v1.calendar import service as calendar_service
from attendance_engine.auth.rbac import ADMIN_ROLES, SCOPE_OWN, ensure_permission, permission_scope
from attendance_engine.auth.schemas import CurrentUser
from attendance_engine.core.aggregation import ReportKey, report_queue
from attendance_engine.core.app_logger import get_logger
from attendance_engine.core.enums import ChangeType, EnrollmentStatus, LedgerOutcome, WriteMode
from attendance_engine.core.exceptions import (
    ATTENDANCE_EXISTS,
    CHANGE_REASON_REQUIRED,
    ENROLLMENT_INACTIVE,
    FUTURE_DATE,
    NOTES_REQUIRED,
    STATUS_NOT_ALLOWED,
    AuthorizationError,
    ConflictError,
    NotFoundError,
    PreconditionError,
    ValidationError,
)
from attendance_engine.core.locks import attendance_key_lock
from attendance_engine.core.models import (
    CourseAssignment,
    Enrollment,
    Section,
    StudentAttendance,
    StudentAttendanceChange,
)

from .schemas import (
    AttendanceChangeResponse,
    AttendanceHistoryItem,
    AttendanceRecordResponse,
    AttendanceUpdate,
    AttendanceUpsert,
    StudentAttendanceHistory,
)

logger = get_logger("ledger")


@dataclass
class LedgerResult:
    record: StudentAttendance
    outcome: LedgerOutcome
    report_keys: List[ReportKey] = field(default_factory=list)


class _Snapshot(NamedTuple):
    status_id: Optional[UUID]
    status_code: Optional[str]
    notes: Optional[str]
    arrival_time: Optional[str]


# ----- Pure helpers -----
def _to_minutes(hhmm: str) -> int:
    hours, minutes = hhmm.split(":")
    return int(hours) * 60 + int(minutes)


def calculate_minutes_late(
    arrival_time: Optional[str],
    late_threshold_time: str,
    mark_as_tardy_after_minutes: int,
) -> int:
    """
    Minutes an arrival is past the late threshold.

    Arrivals at or before the threshold are 0. Past it, the difference only counts
    once it reaches mark_as_tardy_after_minutes; a shorter delay is also 0.
    """
    if not arrival_time:
        return 0
    diff = _to_minutes(arrival_time) - _to_minutes(late_threshold_time)
    if diff <= 0:
        return 0
    return diff if diff >= mark_as_tardy_after_minutes else 0


def report_keys_for(enrollment_id: UUID, bimester_id: Optional[UUID], course_id: Optional[UUID]) -> List[ReportKey]:
    """Overall report key plus the course-scoped one for course-level rows."""
    if bimester_id is None:
        return []
    keys = [ReportKey(enrollment_id, bimester_id)]
    if course_id is not None:
        keys.append(ReportKey(enrollment_id, bimester_id, course_id))
    return keys


def normalize_notes(
    status: AttendanceStatusResponse,
    notes: Optional[str],
    config: AttendanceConfigResponse,
) -> Optional[str]:
    notes = (notes or "").strip() or None
    if not status.can_have_notes:
        return None
    if status.code in config.notes_required_for_states and not notes:
        raise ValidationError(f"Notes are required for status '{status.code}'", NOTES_REQUIRED)
    return notes


def record_to_response(record: StudentAttendance, status_code: str) -> AttendanceRecordResponse:
    return AttendanceRecordResponse(
        id=record.id,
        enrollment_id=record.enrollment_id,
        date=record.date,
        course_assignment_id=record.course_assignment_id,
        status_id=record.attendance_status_id,
        status_code=status_code,
        notes=record.notes,
        arrival_time=record.arrival_time,
        departure_time=record.departure_time,
        minutes_late=record.minutes_late,
        has_justification=record.has_justification,
        justification_id=record.justification_id,
        recorded_by=record.recorded_by,
        recorded_at=record.recorded_at,
        last_modified_by=record.last_modified_by,
        last_modified_at=record.last_modified_at,
    )


def change_to_response(c: StudentAttendanceChange) -> AttendanceChangeResponse:
    return AttendanceChangeResponse(
        id=c.id,
        student_attendance_id=c.student_attendance_id,
        change_type=ChangeType(c.change_type),
        status_code_before=c.status_code_before,
        status_code_after=c.status_code_after,
        notes_before=c.notes_before,
        notes_after=c.notes_after,
        arrival_time_before=c.arrival_time_before,
        arrival_time_after=c.arrival_time_after,
        justification_added_id=c.justification_added_id,
        change_reason=c.change_reason,
        changed_by=c.changed_by,
        changed_at=c.changed_at,
    )


async def record_response(db: AsyncSession, record: StudentAttendance) -> AttendanceRecordResponse:
    status = await registry.get_status_by_id(db, record.attendance_status_id)
    return record_to_response(record, status.code)


def build_change_record(
    record: StudentAttendance,
    change_type: ChangeType,
    before: Optional[_Snapshot],
    status_after: AttendanceStatusResponse,
    changed_by: Optional[UUID],
    change_reason: Optional[str] = None,
    justification_id: Optional[UUID] = None,
) -> StudentAttendanceChange:
    """Append-only snapshot of a transition. The record must already carry its new values."""
    return StudentAttendanceChange(
        student_attendance_id=record.id,
        change_type=change_type.value,
        status_id_before=before.status_id if before else None,
        status_code_before=before.status_code if before else None,
        status_id_after=status_after.id,
        status_code_after=status_after.code,
        notes_before=before.notes if before else None,
        notes_after=record.notes,
        arrival_time_before=before.arrival_time if before else None,
        arrival_time_after=record.arrival_time,
        justification_added_id=justification_id,
        change_reason=change_reason,
        changed_by=changed_by,
        changed_at=datetime.utcnow(),
    )


async def snapshot(db: AsyncSession, record: StudentAttendance) -> _Snapshot:
    status = await registry.get_status_by_id(db, record.attendance_status_id)
    return _Snapshot(record.attendance_status_id, status.code, record.notes, record.arrival_time)


# ----- Lookups and guards -----
async def load_active_enrollment(db: AsyncSession, enrollment_id: UUID) -> Enrollment:
    enrollment = await db.get(Enrollment, enrollment_id)
    if not enrollment:
        raise NotFoundError(f"Enrollment {enrollment_id} not found")
    if enrollment.status != EnrollmentStatus.ACTIVE.value:
        raise PreconditionError(
            f"Enrollment is {enrollment.status}; attendance is only recorded for ACTIVE enrollments",
            ENROLLMENT_INACTIVE,
        )
    return enrollment


async def _load_course_assignment(
    db: AsyncSession,
    course_assignment_id: Optional[UUID],
    section_id: UUID,
    require_active: bool = True,
) -> Optional[CourseAssignment]:
    if course_assignment_id is None:
        return None
    ca = await db.get(CourseAssignment, course_assignment_id)
    if not ca:
        raise NotFoundError(f"Course assignment {course_assignment_id} not found")
    if ca.section_id != section_id:
        raise ValidationError("Course assignment does not belong to the student's section")
    if require_active and not ca.is_active:
        raise ValidationError("Course assignment is inactive")
    return ca


def ensure_not_future(d: date) -> None:
    if d > date.today():
        raise ValidationError(f"Attendance cannot be recorded for a future date ({d})", FUTURE_DATE)


async def _ensure_scope(
    db: AsyncSession,
    user: CurrentUser,
    enrollment: Enrollment,
    ca: Optional[CourseAssignment],
) -> None:
    """Teachers with "own" scope write only their course assignments (or their homeroom for day-level rows)."""
    if permission_scope(user, "attendance") != SCOPE_OWN:
        return
    if ca is not None:
        owner = ca.teacher_id
    else:
        section = await db.get(Section, enrollment.section_id)
        owner = section.teacher_id if section else None
    if owner != user.id:
        raise AuthorizationError("Attendance can only be recorded for your own course assignments")


async def ensure_status_allowed(
    db: AsyncSession,
    user: CurrentUser,
    status: AttendanceStatusResponse,
    action: str,
) -> None:
    if user.role in ADMIN_ROLES:
        return
    allowed = await registry.load_allowed_statuses(db, user.role_id, action)
    if status.id not in {s.id for s in allowed}:
        raise AuthorizationError(
            f"Your role may not {action} attendance with status '{status.code}'",
            STATUS_NOT_ALLOWED,
        )


async def _find_record(
    db: AsyncSession,
    enrollment_id: UUID,
    d: date,
    course_assignment_id: Optional[UUID],
) -> Optional[StudentAttendance]:
    stmt = select(StudentAttendance).where(
        StudentAttendance.enrollment_id == enrollment_id,
        StudentAttendance.date == d,
    )
    if course_assignment_id is None:
        stmt = stmt.where(StudentAttendance.course_assignment_id.is_(None))
    else:
        stmt = stmt.where(StudentAttendance.course_assignment_id == course_assignment_id)
    result = await db.execute(stmt.execution_options(populate_existing=True))
    return result.scalar_one_or_none()


# ----- Write path -----
async def write_record(
    db: AsyncSession,
    user: CurrentUser,
    enrollment: Enrollment,
    d: date,
    ca: Optional[CourseAssignment],
    status: AttendanceStatusResponse,
    config: AttendanceConfigResponse,
    bimester_id: Optional[UUID],
    notes: Optional[str] = None,
    arrival_time: Optional[str] = None,
    departure_time: Optional[str] = None,
    change_reason: Optional[str] = None,
    mode: WriteMode = WriteMode.UPSERT,
) -> LedgerResult:
    """
    Persist one record for an already validated key.

    Callers resolve the enrollment, calendar context and status first; notes must
    already be normalized. Commits on its own and enqueues report refreshes.
    """
    enrollment_id = enrollment.id
    course_assignment_id = ca.id if ca else None
    minutes_late = None
    if status.is_temporal and arrival_time:
        minutes_late = calculate_minutes_late(
            arrival_time, config.late_threshold_time, config.mark_as_tardy_after_minutes
        )
    keys = report_keys_for(enrollment_id, bimester_id, ca.course_id if ca else None)

    async with attendance_key_lock.hold((enrollment_id, d, course_assignment_id)):
        existing = await _find_record(db, enrollment_id, d, course_assignment_id)
        now = datetime.utcnow()
        try:
            if existing is None:
                await ensure_status_allowed(db, user, status, "create")
                record = StudentAttendance(
                    enrollment_id=enrollment_id,
                    date=d,
                    course_assignment_id=course_assignment_id,
                    attendance_status_id=status.id,
                    notes=notes,
                    arrival_time=arrival_time,
                    departure_time=departure_time,
                    minutes_late=minutes_late,
                    has_justification=False,
                    recorded_by=user.id,
                    recorded_at=now,
                    last_modified_by=user.id,
                    last_modified_at=now,
                )
                db.add(record)
                await db.flush()
                db.add(build_change_record(record, ChangeType.CREATE, None, status, user.id, change_reason))
                outcome = LedgerOutcome.CREATED
            else:
                if mode == WriteMode.CREATE_ONLY:
                    raise ConflictError(
                        f"Attendance already recorded for enrollment {enrollment_id} on {d}",
                        ATTENDANCE_EXISTS,
                    )
                current = (existing.attendance_status_id, existing.notes, existing.arrival_time, existing.departure_time)
                if current == (status.id, notes, arrival_time, departure_time):
                    return LedgerResult(existing, LedgerOutcome.UNCHANGED)
                ensure_permission(user, "attendance", "update")
                await ensure_status_allowed(db, user, status, "modify")
                if not (change_reason or "").strip():
                    raise ValidationError("A change reason is required to modify attendance", CHANGE_REASON_REQUIRED)
                before = await snapshot(db, existing)
                existing.attendance_status_id = status.id
                existing.notes = notes
                existing.arrival_time = arrival_time
                existing.departure_time = departure_time
                existing.minutes_late = minutes_late
                existing.last_modified_by = user.id
                existing.last_modified_at = now
                db.add(
                    build_change_record(
                        existing, ChangeType.UPDATE, before, status, user.id, change_reason.strip()
                    )
                )
                record = existing
                outcome = LedgerOutcome.UPDATED
            await db.commit()
        except IntegrityError:
            await db.rollback()
            if mode == WriteMode.CREATE_ONLY:
                raise ConflictError(
                    f"Attendance already recorded for enrollment {enrollment_id} on {d}",
                    ATTENDANCE_EXISTS,
                )
            winner = await _find_record(db, enrollment_id, d, course_assignment_id)
            if winner is None:
                raise
            logger.info("Concurrent write on %s/%s/%s; keeping existing record", enrollment_id, d, course_assignment_id)
            return LedgerResult(winner, LedgerOutcome.SKIPPED)

    report_queue.enqueue_many(keys)
    logger.info(
        "Attendance %s: enrollment=%s date=%s course_assignment=%s status=%s",
        outcome.value, enrollment_id, d, course_assignment_id, status.code,
    )
    return LedgerResult(record, outcome, keys)


async def upsert(db: AsyncSession, user: CurrentUser, payload: AttendanceUpsert) -> LedgerResult:
    """Create the record for the key, or update it when it exists (UPSERT mode)."""
    ensure_permission(user, "attendance", "create")
    if payload.override_calendar:
        ensure_permission(user, "attendance", "backfill")

    enrollment = await load_active_enrollment(db, payload.enrollment_id)
    cycle = await calendar_service.get_cycle_or_error(db, enrollment.cycle_id)
    calendar_service.ensure_cycle_writable(cycle)
    ca = await _load_course_assignment(db, payload.course_assignment_id, enrollment.section_id)
    await _ensure_scope(db, user, enrollment, ca)
    ensure_not_future(payload.date)
    if payload.date < enrollment.date_enrolled:
        raise ValidationError(f"Student was enrolled on {enrollment.date_enrolled}; cannot record {payload.date}")

    ctx = await calendar_service.ensure_instructional_date(
        db, cycle.id, payload.date, override=payload.override_calendar
    )
    config = await registry.load_active_config(db)
    status = await registry.get_status_by_code(db, payload.status_code.strip().upper())
    notes = normalize_notes(status, payload.notes, config)

    return await write_record(
        db,
        user,
        enrollment,
        payload.date,
        ca,
        status,
        config,
        ctx.bimester_id,
        notes=notes,
        arrival_time=payload.arrival_time,
        departure_time=payload.departure_time,
        change_reason=payload.change_reason,
        mode=payload.mode,
    )


async def update_attendance(
    db: AsyncSession,
    user: CurrentUser,
    attendance_id: UUID,
    payload: AttendanceUpdate,
) -> LedgerResult:
    """Edit an existing record by id. Unset fields keep their current values."""
    ensure_permission(user, "attendance", "update")
    if payload.override_calendar:
        ensure_permission(user, "attendance", "backfill")

    record = await db.get(StudentAttendance, attendance_id)
    if not record:
        raise NotFoundError("Attendance record not found")
    enrollment = await load_active_enrollment(db, record.enrollment_id)
    cycle = await calendar_service.get_cycle_or_error(db, enrollment.cycle_id)
    calendar_service.ensure_cycle_writable(cycle)
    ca = await _load_course_assignment(db, record.course_assignment_id, enrollment.section_id, require_active=False)
    ensure_not_future(record.date)
    await _ensure_scope(db, user, enrollment, ca)
    ctx = await calendar_service.ensure_instructional_date(
        db, cycle.id, record.date, override=payload.override_calendar
    )
    config = await registry.load_active_config(db)

    if payload.status_code:
        status = await registry.get_status_by_code(db, payload.status_code.strip().upper())
    else:
        status = await registry.get_status_by_id(db, record.attendance_status_id)
    fields = payload.model_dump(exclude_unset=True)
    notes = fields["notes"] if "notes" in fields else record.notes
    arrival_time = fields["arrival_time"] if "arrival_time" in fields else record.arrival_time
    departure_time = fields["departure_time"] if "departure_time" in fields else record.departure_time
    notes = normalize_notes(status, notes, config)

    return await write_record(
        db,
        user,
        enrollment,
        record.date,
        ca,
        status,
        config,
        ctx.bimester_id,
        notes=notes,
        arrival_time=arrival_time,
        departure_time=departure_time,
        change_reason=payload.change_reason,
        mode=WriteMode.UPSERT,
    )


# ----- Reads -----
async def get_student_attendance(
    db: AsyncSession,
    enrollment_id: UUID,
    limit: int = 50,
    offset: int = 0,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
) -> StudentAttendanceHistory:
    """Records of one enrollment, newest first, each with its change log."""
    if not await db.get(Enrollment, enrollment_id):
        raise NotFoundError(f"Enrollment {enrollment_id} not found")
    filters = [StudentAttendance.enrollment_id == enrollment_id]
    if start_date:
        filters.append(StudentAttendance.date >= start_date)
    if end_date:
        filters.append(StudentAttendance.date <= end_date)

    total = (await db.execute(select(func.count(StudentAttendance.id)).where(*filters))).scalar_one()
    result = await db.execute(
        select(StudentAttendance)
        .options(selectinload(StudentAttendance.changes))
        .where(*filters)
        .order_by(StudentAttendance.date.desc(), StudentAttendance.recorded_at.desc())
        .offset(offset)
        .limit(limit)
        .execution_options(populate_existing=True)
    )
    items: List[AttendanceHistoryItem] = []
    for record in result.scalars().all():
        base = await record_response(db, record)
        items.append(
            AttendanceHistoryItem(
                **base.model_dump(),
                changes=[change_to_response(c) for c in record.changes],
            )
        )
    return StudentAttendanceHistory(enrollment_id=enrollment_id, total=int(total), items=items)


async def list_changes(db: AsyncSession, attendance_id: UUID) -> List[AttendanceChangeResponse]:
    if not await db.get(StudentAttendance, attendance_id):
        raise NotFoundError("Attendance record not found")
    result = await db.execute(
        select(StudentAttendanceChange)
        .where(StudentAttendanceChange.student_attendance_id == attendance_id)
        .order_by(StudentAttendanceChange.changed_at)
    )
    return [change_to_response(c) for c in result.scalars().all()]
