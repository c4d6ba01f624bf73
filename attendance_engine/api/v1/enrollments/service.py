"""Students and enrollments. Status changes are appended to the history table, never edited in place."""

from datetime import date, datetime
from typing import List, Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from attendance_engine.api.v1.calendar import service as calendar_service
from attendance_engine.auth.schemas import CurrentUser
from attendance_engine.core.app_logger import get_logger
from attendance_engine.core.enums import EnrollmentStatus
from attendance_engine.core.exceptions import (
    INVALID_TRANSITION,
    ConflictError,
    NotFoundError,
    PreconditionError,
    ValidationError,
)
from attendance_engine.core.models import Enrollment, EnrollmentStatusChange, GradeCycle, Section, Student

from .schemas import (
    EnrollmentCreate,
    EnrollmentResponse,
    EnrollmentStatusChangeResponse,
    EnrollmentStatusUpdate,
    StudentCreate,
    StudentResponse,
)

logger = get_logger("enrollments")

# Leaving the school ends the enrollment; a new cycle needs a new enrollment.
TERMINAL_STATUSES = (EnrollmentStatus.GRADUATED.value, EnrollmentStatus.TRANSFERRED.value)


def _to_response(e: Enrollment, student: Optional[Student] = None) -> EnrollmentResponse:
    return EnrollmentResponse(
        id=e.id,
        student_id=e.student_id,
        student_name=student.full_name if student else None,
        section_id=e.section_id,
        cycle_id=e.cycle_id,
        status=EnrollmentStatus(e.status),
        date_enrolled=e.date_enrolled,
        created_at=e.created_at,
    )


def _change_to_response(c: EnrollmentStatusChange) -> EnrollmentStatusChangeResponse:
    return EnrollmentStatusChangeResponse(
        id=c.id,
        enrollment_id=c.enrollment_id,
        previous_status=EnrollmentStatus(c.previous_status) if c.previous_status else None,
        new_status=EnrollmentStatus(c.new_status),
        reason=c.reason,
        changed_by=c.changed_by,
        changed_at=c.changed_at,
    )


async def create_student(db: AsyncSession, payload: StudentCreate) -> StudentResponse:
    student = Student(
        code=payload.code.strip() if payload.code else None,
        given_names=payload.given_names.strip(),
        last_names=payload.last_names.strip(),
    )
    db.add(student)
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise ConflictError(f"Student code '{payload.code}' already exists")
    await db.refresh(student)
    return StudentResponse(
        id=student.id,
        code=student.code,
        given_names=student.given_names,
        last_names=student.last_names,
        full_name=student.full_name,
    )


async def create_enrollment(db: AsyncSession, user: CurrentUser, payload: EnrollmentCreate) -> EnrollmentResponse:
    """Enroll a student in a section for a cycle. One enrollment per student per cycle."""
    if payload.cycle_id is None:
        cycle = await calendar_service.require_active_cycle(db)
    else:
        cycle = await calendar_service.get_cycle_or_error(db, payload.cycle_id)
    calendar_service.ensure_cycle_writable(cycle)

    student = await db.get(Student, payload.student_id)
    if not student:
        raise NotFoundError("Student not found")
    section = await db.get(Section, payload.section_id)
    if not section or not section.is_active:
        raise NotFoundError("Section not found or inactive")
    offered = await db.execute(
        select(GradeCycle.id).where(GradeCycle.grade_id == section.grade_id, GradeCycle.cycle_id == cycle.id)
    )
    if offered.first() is None:
        raise ValidationError(f"The section's grade is not offered in cycle '{cycle.name}'")

    existing = await db.execute(
        select(Enrollment.id).where(Enrollment.student_id == student.id, Enrollment.cycle_id == cycle.id)
    )
    if existing.first() is not None:
        raise ConflictError(f"Student is already enrolled in cycle '{cycle.name}'")

    enrollment = Enrollment(
        student_id=student.id,
        section_id=section.id,
        cycle_id=cycle.id,
        status=EnrollmentStatus.ACTIVE.value,
        date_enrolled=payload.date_enrolled or date.today(),
    )
    db.add(enrollment)
    await db.flush()
    db.add(
        EnrollmentStatusChange(
            enrollment_id=enrollment.id,
            previous_status=None,
            new_status=EnrollmentStatus.ACTIVE.value,
            reason="Enrolled",
            changed_by=user.id,
            changed_at=datetime.utcnow(),
        )
    )
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise ConflictError(f"Student is already enrolled in cycle '{cycle.name}'")
    await db.refresh(enrollment)
    return _to_response(enrollment, student)


async def change_status(
    db: AsyncSession,
    user: CurrentUser,
    enrollment_id: UUID,
    payload: EnrollmentStatusUpdate,
) -> EnrollmentResponse:
    enrollment = await db.get(Enrollment, enrollment_id)
    if not enrollment:
        raise NotFoundError("Enrollment not found")
    cycle = await calendar_service.get_cycle_or_error(db, enrollment.cycle_id)
    calendar_service.ensure_cycle_writable(cycle)

    current = enrollment.status
    target = payload.status.value
    if current == target:
        raise PreconditionError(f"Enrollment is already {current}", INVALID_TRANSITION)
    if current in TERMINAL_STATUSES:
        raise PreconditionError(f"Enrollment is {current}; its status can no longer change", INVALID_TRANSITION)

    enrollment.status = target
    db.add(
        EnrollmentStatusChange(
            enrollment_id=enrollment.id,
            previous_status=current,
            new_status=target,
            reason=(payload.reason or "").strip() or None,
            changed_by=user.id,
            changed_at=datetime.utcnow(),
        )
    )
    await db.commit()
    await db.refresh(enrollment)
    logger.info("Enrollment %s: %s -> %s", enrollment.id, current, target)
    return _to_response(enrollment)


async def list_enrollments(
    db: AsyncSession,
    section_id: Optional[UUID] = None,
    cycle_id: Optional[UUID] = None,
    status_filter: Optional[EnrollmentStatus] = None,
) -> List[EnrollmentResponse]:
    stmt = select(Enrollment).options(selectinload(Enrollment.student))
    if section_id:
        stmt = stmt.where(Enrollment.section_id == section_id)
    if cycle_id:
        stmt = stmt.where(Enrollment.cycle_id == cycle_id)
    if status_filter:
        stmt = stmt.where(Enrollment.status == status_filter.value)
    result = await db.execute(stmt.order_by(Enrollment.date_enrolled, Enrollment.id))
    return [_to_response(e, e.student) for e in result.scalars().all()]


async def get_status_history(db: AsyncSession, enrollment_id: UUID) -> List[EnrollmentStatusChangeResponse]:
    if not await db.get(Enrollment, enrollment_id):
        raise NotFoundError("Enrollment not found")
    result = await db.execute(
        select(EnrollmentStatusChange)
        .where(EnrollmentStatusChange.enrollment_id == enrollment_id)
        .order_by(EnrollmentStatusChange.changed_at)
    )
    return [_change_to_response(c) for c in result.scalars().all()]
