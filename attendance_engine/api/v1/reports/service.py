"""
Risk aggregator: per (enrollment, bimester, course|overall) attendance reports.

Records are categorized by status flags, never by code:
temporal -> tardy, negative or excused -> absence, anything else -> present.
A tardy or absence is justified when its status is excused or the record
carries an approved justification.
"""

from collections import defaultdict
from dataclasses import asdict, dataclass
from datetime import date, datetime
from typing import DefaultDict, Dict, List, Optional, Tuple
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from attendance_engine.api.v1.attendance_statuses import service as registry
from attendance_engine.api.v1.attendance_statuses.schemas import AttendanceStatusResponse
from attendance_engine.core.app_logger import get_logger
from attendance_engine.core.exceptions import NotFoundError
from attendance_engine.core.models import (
    Bimester,
    CourseAssignment,
    Enrollment,
    StudentAttendance,
    StudentAttendanceReport,
)
from attendance_engine.core.notifications import dispatch_risk_alert

from .schemas import AttendanceReportResponse

logger = get_logger("reports")

PRESENT = "present"
ABSENT = "absent"
ABSENT_JUSTIFIED = "absent_justified"
TARDY = "tardy"
TARDY_JUSTIFIED = "tardy_justified"


@dataclass
class ReportFigures:
    total_marked: int
    count_present: int
    count_absent: int
    count_absent_justified: int
    count_tardy: int
    count_tardy_justified: int
    attendance_percentage: float
    absence_percentage: float
    consecutive_absences: int


def categorize(status: AttendanceStatusResponse, has_justification: bool) -> str:
    excused = status.is_excused or has_justification
    if status.is_temporal:
        return TARDY_JUSTIFIED if excused else TARDY
    if status.is_negative or status.is_excused:
        return ABSENT_JUSTIFIED if excused else ABSENT
    return PRESENT


def compute_figures(categorized: List[Tuple[date, str]]) -> ReportFigures:
    """
    categorized: (date, category) pairs for every marked record in the window.

    Streak: walking back from the most recent marked day, count days whose records
    are all unexcused absences; the first other day ends it.
    """
    counts: Dict[str, int] = {PRESENT: 0, ABSENT: 0, ABSENT_JUSTIFIED: 0, TARDY: 0, TARDY_JUSTIFIED: 0}
    by_day: DefaultDict[date, List[str]] = defaultdict(list)
    for d, category in categorized:
        counts[category] += 1
        by_day[d].append(category)

    total = len(categorized)
    if total:
        attended = counts[PRESENT] + counts[TARDY] + counts[TARDY_JUSTIFIED]
        attendance_pct = round(attended / total * 100, 2)
        absence_pct = round((counts[ABSENT] + counts[ABSENT_JUSTIFIED]) / total * 100, 2)
    else:
        attendance_pct = 100.0
        absence_pct = 0.0

    streak = 0
    for d in sorted(by_day, reverse=True):
        if all(c == ABSENT for c in by_day[d]):
            streak += 1
        else:
            break

    return ReportFigures(
        total_marked=total,
        count_present=counts[PRESENT],
        count_absent=counts[ABSENT],
        count_absent_justified=counts[ABSENT_JUSTIFIED],
        count_tardy=counts[TARDY],
        count_tardy_justified=counts[TARDY_JUSTIFIED],
        attendance_percentage=attendance_pct,
        absence_percentage=absence_pct,
        consecutive_absences=streak,
    )


def report_to_response(r: StudentAttendanceReport) -> AttendanceReportResponse:
    return AttendanceReportResponse(
        id=r.id,
        enrollment_id=r.enrollment_id,
        bimester_id=r.bimester_id,
        course_id=r.course_id,
        total_marked=r.total_marked,
        count_present=r.count_present,
        count_absent=r.count_absent,
        count_absent_justified=r.count_absent_justified,
        count_tardy=r.count_tardy,
        count_tardy_justified=r.count_tardy_justified,
        attendance_percentage=r.attendance_percentage,
        absence_percentage=r.absence_percentage,
        consecutive_absences=r.consecutive_absences,
        is_at_risk=r.is_at_risk,
        needs_intervention=r.needs_intervention,
        is_stale=r.is_stale,
        last_calculated_at=r.last_calculated_at,
    )


async def _find_report(
    db: AsyncSession,
    enrollment_id: UUID,
    bimester_id: UUID,
    course_id: Optional[UUID],
) -> Optional[StudentAttendanceReport]:
    stmt = select(StudentAttendanceReport).where(
        StudentAttendanceReport.enrollment_id == enrollment_id,
        StudentAttendanceReport.bimester_id == bimester_id,
    )
    if course_id is None:
        stmt = stmt.where(StudentAttendanceReport.course_id.is_(None))
    else:
        stmt = stmt.where(StudentAttendanceReport.course_id == course_id)
    result = await db.execute(stmt.execution_options(populate_existing=True))
    return result.scalar_one_or_none()


def _apply_figures(
    report: StudentAttendanceReport, figures: ReportFigures, is_at_risk: bool, needs_intervention: bool
) -> None:
    for field, value in asdict(figures).items():
        setattr(report, field, value)
    report.is_at_risk = is_at_risk
    report.needs_intervention = needs_intervention
    report.is_stale = False
    report.last_calculated_at = datetime.utcnow()


async def recalculate(
    db: AsyncSession,
    enrollment_id: UUID,
    bimester_id: UUID,
    course_id: Optional[UUID] = None,
) -> AttendanceReportResponse:
    """Recompute the report for one key from the ledger and replace the stored one."""
    enrollment = await db.get(Enrollment, enrollment_id)
    if not enrollment:
        raise NotFoundError(f"Enrollment {enrollment_id} not found")
    student_id = enrollment.student_id
    bimester = await db.get(Bimester, bimester_id)
    if not bimester:
        raise NotFoundError(f"Bimester {bimester_id} not found")
    config = await registry.load_active_config(db)

    stmt = select(StudentAttendance).where(
        StudentAttendance.enrollment_id == enrollment_id,
        StudentAttendance.date >= bimester.start_date,
        StudentAttendance.date <= bimester.end_date,
    )
    if course_id is not None:
        stmt = stmt.join(CourseAssignment, StudentAttendance.course_assignment_id == CourseAssignment.id).where(
            CourseAssignment.course_id == course_id
        )
    result = await db.execute(stmt.order_by(StudentAttendance.date).execution_options(populate_existing=True))

    categorized: List[Tuple[date, str]] = []
    for record in result.scalars().all():
        status = await registry.get_status_by_id(db, record.attendance_status_id)
        categorized.append((record.date, categorize(status, record.has_justification)))
    figures = compute_figures(categorized)
    is_at_risk = figures.attendance_percentage < config.risk_threshold_percentage
    needs_intervention = figures.consecutive_absences >= config.consecutive_absence_alert

    report = await _find_report(db, enrollment_id, bimester_id, course_id)
    if report is None:
        report = StudentAttendanceReport(enrollment_id=enrollment_id, bimester_id=bimester_id, course_id=course_id)
        db.add(report)
    was_at_risk = bool(report.is_at_risk)
    was_intervention = bool(report.needs_intervention)
    _apply_figures(report, figures, is_at_risk, needs_intervention)
    try:
        await db.commit()
    except IntegrityError:
        # Another refresh inserted the row first; overwrite it with these figures.
        await db.rollback()
        report = await _find_report(db, enrollment_id, bimester_id, course_id)
        if report is None:
            raise
        logger.info("Concurrent report insert for enrollment=%s bimester=%s course=%s", enrollment_id, bimester_id, course_id)
        was_at_risk = bool(report.is_at_risk)
        was_intervention = bool(report.needs_intervention)
        _apply_figures(report, figures, is_at_risk, needs_intervention)
        await db.commit()
    await db.refresh(report)

    if (is_at_risk and not was_at_risk) or (needs_intervention and not was_intervention):
        logger.info(
            "Enrollment %s crossed a risk threshold in bimester %s (attendance %.2f%%, streak %d)",
            enrollment_id, bimester_id, figures.attendance_percentage, figures.consecutive_absences,
        )
        dispatch_risk_alert(
            {
                "enrollment_id": str(enrollment_id),
                "student_id": str(student_id),
                "bimester_id": str(bimester_id),
                "course_id": str(course_id) if course_id else None,
                "attendance_percentage": figures.attendance_percentage,
                "consecutive_absences": figures.consecutive_absences,
                "is_at_risk": is_at_risk,
                "needs_intervention": needs_intervention,
            }
        )
    return report_to_response(report)


async def mark_stale(
    db: AsyncSession,
    enrollment_id: UUID,
    bimester_id: UUID,
    course_id: Optional[UUID] = None,
) -> None:
    """Flag a report whose refresh failed. A placeholder row is created when none exists yet."""
    report = await _find_report(db, enrollment_id, bimester_id, course_id)
    if report is None:
        report = StudentAttendanceReport(enrollment_id=enrollment_id, bimester_id=bimester_id, course_id=course_id)
        db.add(report)
    report.is_stale = True
    await db.commit()
    logger.warning("Report marked stale: enrollment=%s bimester=%s course=%s", enrollment_id, bimester_id, course_id)


async def get_report(
    db: AsyncSession,
    enrollment_id: UUID,
    bimester_id: UUID,
    course_id: Optional[UUID] = None,
) -> AttendanceReportResponse:
    report = await _find_report(db, enrollment_id, bimester_id, course_id)
    if report is None:
        raise NotFoundError("Attendance report not found; it is created on the first recorded attendance")
    return report_to_response(report)


async def list_reports(
    db: AsyncSession,
    bimester_id: UUID,
    at_risk_only: bool = False,
    course_id: Optional[UUID] = None,
    section_id: Optional[UUID] = None,
) -> List[AttendanceReportResponse]:
    """Reports of a bimester; overall reports unless a course is given."""
    stmt = select(StudentAttendanceReport).where(StudentAttendanceReport.bimester_id == bimester_id)
    if course_id is None:
        stmt = stmt.where(StudentAttendanceReport.course_id.is_(None))
    else:
        stmt = stmt.where(StudentAttendanceReport.course_id == course_id)
    if at_risk_only:
        stmt = stmt.where(
            (StudentAttendanceReport.is_at_risk.is_(True)) | (StudentAttendanceReport.needs_intervention.is_(True))
        )
    if section_id is not None:
        stmt = stmt.join(Enrollment, Enrollment.id == StudentAttendanceReport.enrollment_id).where(
            Enrollment.section_id == section_id
        )
    result = await db.execute(stmt.order_by(StudentAttendanceReport.attendance_percentage))
    return [report_to_response(r) for r in result.scalars().all()]
