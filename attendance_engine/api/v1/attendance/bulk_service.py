"""Bulk registration: one status for every active student of up to N course assignments."""

from datetime import date
from typing import List, Set
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from attendance_engine.api.v1.attendance_statuses import service as registry
from attendance_engine.api.v1.calendar import service as calendar_service
from attendance_engine.auth.rbac import SCOPE_OWN, ensure_permission, permission_scope
from attendance_engine.auth.schemas import CurrentUser
from attendance_engine.core.aggregation import ReportKey
from attendance_engine.core.app_logger import get_logger
from attendance_engine.core.config import settings
from attendance_engine.core.enums import EnrollmentStatus, LedgerOutcome, WriteMode
from attendance_engine.core.exceptions import (
    ATTENDANCE_EXISTS,
    TOO_MANY_ITEMS,
    AuthorizationError,
    NotFoundError,
    ServiceError,
    StoreError,
    ValidationError,
)
from attendance_engine.core.models import CourseAssignment, Enrollment

from . import service as ledger
from .schemas import AttendanceRecordResponse, BulkCourseRegistration, BulkCourseResult, BulkRegistrationSummary

logger = get_logger("bulk_registration")


async def _course_enrollments(db: AsyncSession, section_id: UUID, cycle_id: UUID, d: date) -> List[Enrollment]:
    """ACTIVE enrollments of the section in the cycle, enrolled on or before the date."""
    result = await db.execute(
        select(Enrollment)
        .where(
            Enrollment.section_id == section_id,
            Enrollment.cycle_id == cycle_id,
            Enrollment.status == EnrollmentStatus.ACTIVE.value,
            Enrollment.date_enrolled <= d,
        )
        .order_by(Enrollment.date_enrolled, Enrollment.id)
    )
    return list(result.scalars().all())


async def _load_course_assignment(db: AsyncSession, user: CurrentUser, course_assignment_id: UUID) -> CourseAssignment:
    ca = await db.get(CourseAssignment, course_assignment_id)
    if not ca:
        raise NotFoundError(f"Course assignment {course_assignment_id} not found")
    if not ca.is_active:
        raise ValidationError(f"Course assignment {course_assignment_id} is inactive")
    if permission_scope(user, "attendance") == SCOPE_OWN and ca.teacher_id != user.id:
        raise AuthorizationError(f"Course assignment {course_assignment_id} is not assigned to you")
    return ca


async def register_by_courses(
    db: AsyncSession,
    user: CurrentUser,
    payload: BulkCourseRegistration,
) -> BulkRegistrationSummary:
    """
    Create one record per (enrollment, date, course assignment) that does not exist yet.

    Existing records are counted as skipped and never overwritten. The whole call
    is rejected for bad input (id count, status, date); after that each course
    assignment succeeds or fails on its own and is reported in `courses`.
    """
    ensure_permission(user, "attendance", "create")
    ids = list(dict.fromkeys(payload.course_assignment_ids))
    if not ids:
        raise ValidationError("At least one course assignment is required")
    if len(ids) > settings.bulk_max_course_assignments:
        raise ValidationError(
            f"At most {settings.bulk_max_course_assignments} course assignments per request",
            TOO_MANY_ITEMS,
        )

    ledger.ensure_not_future(payload.date)
    cycle = await calendar_service.require_active_cycle(db)
    calendar_service.ensure_cycle_writable(cycle)
    cycle_id = cycle.id
    ctx = await calendar_service.ensure_instructional_date(db, cycle_id, payload.date)
    config = await registry.load_active_config(db)
    status = await registry.get_status_by_code(db, payload.status_code.strip().upper())
    await ledger.ensure_status_allowed(db, user, status, "create")
    notes = ledger.normalize_notes(status, payload.notes, config)

    created = 0
    skipped = 0
    report_keys: Set[ReportKey] = set()
    covered: Set[UUID] = set()
    records: List[AttendanceRecordResponse] = []
    courses: List[BulkCourseResult] = []

    for ca_id in ids:
        outcome = BulkCourseResult(course_assignment_id=ca_id)
        courses.append(outcome)
        try:
            ca = await _load_course_assignment(db, user, ca_id)
            outcome.section_id = ca.section_id
            enrollments = await _course_enrollments(db, ca.section_id, cycle_id, payload.date)
        except ServiceError as e:
            outcome.error = e.to_detail()
            logger.warning("Bulk registration skipped course assignment %s: %s", ca_id, e.message)
            continue
        except SQLAlchemyError:
            await db.rollback()
            outcome.error = StoreError(f"Course assignment {ca_id} could not be loaded").to_detail()
            logger.exception("Bulk registration skipped course assignment %s", ca_id)
            continue

        outcome.enrollments = len(enrollments)
        course_enrollments: Set[UUID] = set()
        for enrollment in enrollments:
            try:
                result = await ledger.write_record(
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
                    mode=WriteMode.CREATE_ONLY,
                )
            except ServiceError as e:
                if e.code == ATTENDANCE_EXISTS:
                    outcome.skipped += 1
                    course_enrollments.add(enrollment.id)
                    continue
                outcome.error = e.to_detail()
                logger.warning("Bulk registration stopped course assignment %s at enrollment %s: %s", ca_id, enrollment.id, e.message)
                break
            except SQLAlchemyError:
                await db.rollback()
                outcome.error = StoreError(f"Attendance for course assignment {ca_id} could not be stored").to_detail()
                logger.exception("Bulk registration stopped course assignment %s on a store error", ca_id)
                break
            if result.outcome == LedgerOutcome.CREATED:
                outcome.created += 1
                report_keys.update(result.report_keys)
                records.append(ledger.record_to_response(result.record, status.code))
            else:
                outcome.skipped += 1
            course_enrollments.add(enrollment.id)

        created += outcome.created
        skipped += outcome.skipped
        if outcome.error is None:
            covered.update(course_enrollments)

    summary = BulkRegistrationSummary(
        created_attendances=created,
        skipped_existing=skipped,
        created_reports=len(report_keys),
        enrollments_covered=len(covered),
        records=records,
        courses=courses,
    )
    logger.info(
        "Bulk registration on %s: %d created, %d skipped, %d enrollments, %d/%d courses ok",
        payload.date, created, skipped, len(covered),
        sum(1 for c in courses if c.error is None), len(courses),
    )
    return summary
