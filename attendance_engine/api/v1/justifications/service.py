"""
Justification workflow: pending -> approved | rejected.

Approval can retroactively mark the covered attendance records as justified and
remap negative statuses to their excused equivalent (justified_status_map);
every covered record is linked to the justification, whatever its status.
Rejection never touches attendance. Every transition queues report refreshes for
the bimesters the justification covers.
"""

from datetime import date, datetime, timedelta
from typing import List, Optional, Set, Tuple
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from attendance_engine.api.v1.attendance import service as ledger
from attendance_engine.api.v1.attendance_statuses import service as registry
from attendance_engine.api.v1.attendance_statuses.schemas import AttendanceStatusResponse
from attendance_engine.api.v1.calendar import service as calendar_service
from attendance_engine.auth.rbac import ensure_permission
from attendance_engine.auth.schemas import CurrentUser
from attendance_engine.core.aggregation import ReportKey, report_queue
from attendance_engine.core.app_logger import get_logger
from attendance_engine.core.config import settings
from attendance_engine.core.enums import ChangeType, JustificationStatus
from attendance_engine.core.exceptions import (
    INVALID_TRANSITION,
    JUSTIFIED_STATUS_UNAVAILABLE,
    REJECTION_REASON_REQUIRED,
    TOO_MANY_ITEMS,
    ConflictError,
    NotFoundError,
    PreconditionError,
    ServiceError,
    StoreError,
    ValidationError,
)
from attendance_engine.core.models import Bimester, Enrollment, StudentAttendance, StudentJustification

from .schemas import (
    AutoApprovalSweepResult,
    BulkItemResult,
    BulkJustificationResult,
    JustificationCreate,
    JustificationResponse,
)

logger = get_logger("justifications")


def _to_response(j: StudentJustification, records_updated: int = 0) -> JustificationResponse:
    return JustificationResponse(
        id=j.id,
        enrollment_id=j.enrollment_id,
        start_date=j.start_date,
        end_date=j.end_date,
        type=j.type,
        reason=j.reason,
        description=j.description,
        document_url=j.document_url,
        status=JustificationStatus(j.status),
        approved_by=j.approved_by,
        approved_at=j.approved_at,
        rejection_reason=j.rejection_reason,
        auto_approved=j.auto_approved,
        submitted_by=j.submitted_by,
        submitted_at=j.submitted_at,
        records_updated=records_updated,
    )


async def _get_or_error(db: AsyncSession, justification_id: UUID) -> StudentJustification:
    j = await db.get(StudentJustification, justification_id)
    if not j:
        raise NotFoundError(f"Justification {justification_id} not found")
    return j


async def _enrollment_cycle_writable(db: AsyncSession, enrollment_id: UUID) -> Enrollment:
    enrollment = await db.get(Enrollment, enrollment_id)
    if not enrollment:
        raise NotFoundError(f"Enrollment {enrollment_id} not found")
    cycle = await calendar_service.get_cycle_or_error(db, enrollment.cycle_id)
    calendar_service.ensure_cycle_writable(cycle)
    return enrollment


def _ensure_pending(j: StudentJustification, target: JustificationStatus) -> None:
    if j.status != JustificationStatus.pending.value:
        raise PreconditionError(
            f"Justification is {j.status}; only pending justifications can be {target.value}",
            INVALID_TRANSITION,
        )


async def _enqueue_refresh(
    db: AsyncSession,
    enrollment: Enrollment,
    j: StudentJustification,
    course_dates: Set[Tuple[UUID, date]],
) -> None:
    """Overall keys for every bimester the range touches, plus course keys of the records changed."""
    bimesters: List[Bimester] = await calendar_service.bimesters_for_range(
        db, enrollment.cycle_id, j.start_date, j.end_date
    )
    keys: List[ReportKey] = [ReportKey(enrollment.id, b.id) for b in bimesters]
    for course_id, d in course_dates:
        for b in bimesters:
            if b.start_date <= d <= b.end_date:
                keys.append(ReportKey(enrollment.id, b.id, course_id))
    report_queue.enqueue_many(keys)


# ----- Submit -----
async def submit(
    db: AsyncSession,
    user: CurrentUser,
    payload: JustificationCreate,
    today: Optional[date] = None,
) -> JustificationResponse:
    ensure_permission(user, "justifications", "create")
    enrollment = await _enrollment_cycle_writable(db, payload.enrollment_id)
    config = await registry.load_active_config(db)
    today = today or date.today()

    if (today - payload.start_date).days > config.max_justification_days:
        raise ValidationError(
            f"Justifications must be submitted within {config.max_justification_days} days of the absence"
        )
    if (payload.end_date - payload.start_date).days + 1 > config.max_justification_days:
        raise ValidationError(f"A justification may cover at most {config.max_justification_days} days")

    overlap = await db.execute(
        select(StudentJustification.id).where(
            StudentJustification.enrollment_id == enrollment.id,
            StudentJustification.status.in_([JustificationStatus.pending.value, JustificationStatus.approved.value]),
            StudentJustification.start_date <= payload.end_date,
            StudentJustification.end_date >= payload.start_date,
        )
    )
    if overlap.first() is not None:
        raise ConflictError("A pending or approved justification already covers part of this range")

    j = StudentJustification(
        enrollment_id=enrollment.id,
        start_date=payload.start_date,
        end_date=payload.end_date,
        type=payload.type.strip(),
        reason=payload.reason.strip(),
        description=payload.description,
        document_url=payload.document_url,
        status=JustificationStatus.pending.value,
        auto_approved=False,
        submitted_by=user.id,
        submitted_at=datetime.utcnow(),
    )
    db.add(j)
    await db.commit()
    await db.refresh(j)
    logger.info("Justification %s submitted for enrollment %s (%s..%s)", j.id, enrollment.id, j.start_date, j.end_date)
    return _to_response(j)


# ----- Approve -----
async def _approve(
    db: AsyncSession,
    j: StudentJustification,
    approver_id: Optional[UUID],
    auto_update_attendance: bool,
    auto_approved: bool = False,
) -> int:
    """Apply the approval and commit. Returns the number of attendance records touched."""
    _ensure_pending(j, JustificationStatus.approved)
    enrollment = await _enrollment_cycle_writable(db, j.enrollment_id)
    now = datetime.utcnow()
    touched = 0
    course_dates: Set[Tuple[UUID, date]] = set()

    if auto_update_attendance:
        config = await registry.load_active_config(db)
        result = await db.execute(
            select(StudentAttendance)
            .options(selectinload(StudentAttendance.course_assignment))
            .where(
                StudentAttendance.enrollment_id == j.enrollment_id,
                StudentAttendance.date >= j.start_date,
                StudentAttendance.date <= j.end_date,
            )
            .order_by(StudentAttendance.date)
        )
        records = result.scalars().all()

        # Resolve every remap target before any record changes.
        plan: List[Tuple[StudentAttendance, AttendanceStatusResponse]] = []
        for record in records:
            current = await registry.get_status_by_id(db, record.attendance_status_id)
            target = current
            mapped_code = config.justified_status_map.get(current.code) if current.is_negative else None
            if mapped_code:
                try:
                    target = await registry.get_status_by_code(db, mapped_code)
                except ValidationError:
                    raise PreconditionError(
                        f"Justified status '{mapped_code}' mapped from '{current.code}' is not an active status",
                        JUSTIFIED_STATUS_UNAVAILABLE,
                    )
            plan.append((record, target))

        for record, target in plan:
            before = await ledger.snapshot(db, record)
            record.attendance_status_id = target.id
            record.has_justification = True
            record.justification_id = j.id
            record.last_modified_by = approver_id
            record.last_modified_at = now
            db.add(
                ledger.build_change_record(
                    record,
                    ChangeType.JUSTIFICATION,
                    before,
                    target,
                    approver_id,
                    change_reason=f"Justification approved: {j.reason}",
                    justification_id=j.id,
                )
            )
            if record.course_assignment is not None:
                course_dates.add((record.course_assignment.course_id, record.date))
            touched += 1

    j.status = JustificationStatus.approved.value
    j.approved_by = approver_id
    j.approved_at = now
    j.auto_approved = auto_approved
    await db.commit()
    await db.refresh(j)
    await _enqueue_refresh(db, enrollment, j, course_dates)
    logger.info(
        "Justification %s approved%s; %d attendance records updated",
        j.id, " automatically" if auto_approved else "", touched,
    )
    return touched


async def approve(
    db: AsyncSession,
    user: CurrentUser,
    justification_id: UUID,
    auto_update_attendance: bool = True,
) -> JustificationResponse:
    ensure_permission(user, "justifications", "approve")
    j = await _get_or_error(db, justification_id)
    touched = await _approve(db, j, user.id, auto_update_attendance)
    return _to_response(j, touched)


# ----- Reject -----
async def reject(
    db: AsyncSession,
    user: CurrentUser,
    justification_id: UUID,
    rejection_reason: Optional[str],
) -> JustificationResponse:
    """Reject a pending justification. Attendance records are left as they are."""
    ensure_permission(user, "justifications", "approve")
    reason = (rejection_reason or "").strip()
    if not reason:
        raise ValidationError("A rejection reason is required", REJECTION_REASON_REQUIRED)
    j = await _get_or_error(db, justification_id)
    _ensure_pending(j, JustificationStatus.rejected)
    enrollment = await _enrollment_cycle_writable(db, j.enrollment_id)

    j.status = JustificationStatus.rejected.value
    j.rejection_reason = reason
    await db.commit()
    await db.refresh(j)
    await _enqueue_refresh(db, enrollment, j, set())
    logger.info("Justification %s rejected", j.id)
    return _to_response(j)


# ----- Bulk -----
def _check_bulk_size(ids: List[UUID]) -> List[UUID]:
    unique = list(dict.fromkeys(ids))
    if not unique:
        raise ValidationError("At least one justification id is required")
    if len(unique) > settings.bulk_max_justifications:
        raise ValidationError(
            f"At most {settings.bulk_max_justifications} justifications per request",
            TOO_MANY_ITEMS,
        )
    return unique


async def bulk_approve(
    db: AsyncSession,
    user: CurrentUser,
    justification_ids: List[UUID],
    auto_update_attendance: bool = True,
) -> BulkJustificationResult:
    """Approve each id independently; failures are reported per item."""
    ensure_permission(user, "justifications", "approve")
    items: List[BulkItemResult] = []
    for jid in _check_bulk_size(justification_ids):
        try:
            res = await approve(db, user, jid, auto_update_attendance)
            items.append(BulkItemResult(justification_id=jid, ok=True, status=res.status, records_updated=res.records_updated))
        except ServiceError as e:
            await db.rollback()
            items.append(BulkItemResult(justification_id=jid, ok=False, error=e.to_detail()))
        except SQLAlchemyError:
            await db.rollback()
            logger.exception("Bulk approve failed to store justification %s", jid)
            items.append(BulkItemResult(justification_id=jid, ok=False, error=StoreError(f"Justification {jid} could not be stored").to_detail()))
    succeeded = sum(1 for i in items if i.ok)
    logger.info("Bulk approve: %d succeeded, %d failed", succeeded, len(items) - succeeded)
    return BulkJustificationResult(succeeded=succeeded, failed=len(items) - succeeded, items=items)


async def bulk_reject(
    db: AsyncSession,
    user: CurrentUser,
    justification_ids: List[UUID],
    rejection_reason: Optional[str],
) -> BulkJustificationResult:
    ensure_permission(user, "justifications", "approve")
    if not (rejection_reason or "").strip():
        raise ValidationError("A rejection reason is required", REJECTION_REASON_REQUIRED)
    items: List[BulkItemResult] = []
    for jid in _check_bulk_size(justification_ids):
        try:
            res = await reject(db, user, jid, rejection_reason)
            items.append(BulkItemResult(justification_id=jid, ok=True, status=res.status))
        except ServiceError as e:
            await db.rollback()
            items.append(BulkItemResult(justification_id=jid, ok=False, error=e.to_detail()))
        except SQLAlchemyError:
            await db.rollback()
            logger.exception("Bulk reject failed to store justification %s", jid)
            items.append(BulkItemResult(justification_id=jid, ok=False, error=StoreError(f"Justification {jid} could not be stored").to_detail()))
    succeeded = sum(1 for i in items if i.ok)
    logger.info("Bulk reject: %d succeeded, %d failed", succeeded, len(items) - succeeded)
    return BulkJustificationResult(succeeded=succeeded, failed=len(items) - succeeded, items=items)


# ----- Auto-approval -----
async def sweep_auto_approvals(db: AsyncSession, now: Optional[datetime] = None) -> AutoApprovalSweepResult:
    """
    Approve pending justifications older than auto_approval_after_days.

    Does nothing unless the active configuration enables auto_approve_justification.
    """
    config = await registry.load_active_config(db)
    if not config.auto_approve_justification:
        return AutoApprovalSweepResult(enabled=False, approved=0)
    now = now or datetime.utcnow()
    cutoff = now - timedelta(days=config.auto_approval_after_days)
    result = await db.execute(
        select(StudentJustification.id)
        .where(
            StudentJustification.status == JustificationStatus.pending.value,
            StudentJustification.submitted_at <= cutoff,
        )
        .order_by(StudentJustification.submitted_at)
    )
    due = [row[0] for row in result.all()]
    approved: List[UUID] = []
    failed = 0
    for jid in due:
        try:
            j = await _get_or_error(db, jid)
            await _approve(db, j, None, auto_update_attendance=True, auto_approved=True)
            approved.append(jid)
        except ServiceError as e:
            await db.rollback()
            failed += 1
            logger.warning("Auto-approval of justification %s failed: %s", jid, e.message)
        except SQLAlchemyError:
            await db.rollback()
            failed += 1
            logger.exception("Auto-approval of justification %s could not be stored", jid)
    if approved or failed:
        logger.info("Auto-approval sweep: %d approved, %d failed", len(approved), failed)
    return AutoApprovalSweepResult(enabled=True, approved=len(approved), failed=failed, justification_ids=approved)


# ----- Reads -----
async def get_justification(db: AsyncSession, justification_id: UUID) -> JustificationResponse:
    return _to_response(await _get_or_error(db, justification_id))


async def list_justifications(
    db: AsyncSession,
    enrollment_id: Optional[UUID] = None,
    status_filter: Optional[JustificationStatus] = None,
    limit: int = 50,
    offset: int = 0,
) -> Tuple[int, List[JustificationResponse]]:
    filters = []
    if enrollment_id:
        filters.append(StudentJustification.enrollment_id == enrollment_id)
    if status_filter:
        filters.append(StudentJustification.status == status_filter.value)
    total = (await db.execute(select(func.count(StudentJustification.id)).where(*filters))).scalar_one()
    result = await db.execute(
        select(StudentJustification)
        .where(*filters)
        .order_by(StudentJustification.submitted_at.desc())
        .offset(offset)
        .limit(limit)
    )
    return int(total), [_to_response(j) for j in result.scalars().all()]
