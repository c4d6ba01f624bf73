"""Attendance records and their append-only change log."""

import uuid
from datetime import datetime

from sqlalchemy import (
    Boolean,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    Uuid,
    text,
)
from sqlalchemy.orm import relationship

from attendance_engine.db.session import Base


class StudentAttendance(Base):
    """One row per (enrollment_id, date, course_assignment_id). course_assignment_id NULL means day-level."""

    __tablename__ = "student_attendance"
    __table_args__ = (
        UniqueConstraint(
            "enrollment_id", "date", "course_assignment_id",
            name="uq_attendance_enrollment_date_course",
        ),
        # NULLs never collide in a unique constraint; day-level rows need their own index.
        Index(
            "uq_attendance_enrollment_date_day",
            "enrollment_id", "date",
            unique=True,
            postgresql_where=text("course_assignment_id IS NULL"),
            sqlite_where=text("course_assignment_id IS NULL"),
        ),
    )

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    enrollment_id = Column(Uuid(as_uuid=True), ForeignKey("enrollments.id", ondelete="CASCADE"), nullable=False, index=True)
    date = Column(Date, nullable=False, index=True)
    course_assignment_id = Column(
        Uuid(as_uuid=True),
        ForeignKey("course_assignments.id", ondelete="CASCADE"),
        nullable=True,
    )
    attendance_status_id = Column(
        Uuid(as_uuid=True),
        ForeignKey("attendance_statuses.id", ondelete="RESTRICT"),
        nullable=False,
    )
    notes = Column(Text, nullable=True)
    arrival_time = Column(String(5), nullable=True)  # HH:MM
    departure_time = Column(String(5), nullable=True)
    minutes_late = Column(Integer, nullable=True)
    has_justification = Column(Boolean, nullable=False, default=False)
    justification_id = Column(
        Uuid(as_uuid=True),
        ForeignKey("student_justifications.id", ondelete="SET NULL"),
        nullable=True,
    )
    recorded_by = Column(Uuid(as_uuid=True), ForeignKey("users.id", ondelete="RESTRICT"), nullable=True)
    recorded_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
    last_modified_by = Column(Uuid(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    last_modified_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)

    enrollment = relationship("Enrollment", foreign_keys=[enrollment_id])
    status = relationship("AttendanceStatus", foreign_keys=[attendance_status_id])
    course_assignment = relationship("CourseAssignment", foreign_keys=[course_assignment_id])
    changes = relationship(
        "StudentAttendanceChange",
        back_populates="attendance",
        cascade="all, delete-orphan",
        order_by="StudentAttendanceChange.changed_at",
    )


class StudentAttendanceChange(Base):
    """Immutable before/after snapshot of every ledger transition."""

    __tablename__ = "student_attendance_changes"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    student_attendance_id = Column(
        Uuid(as_uuid=True),
        ForeignKey("student_attendance.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    change_type = Column(String(20), nullable=False)  # CREATE, UPDATE, JUSTIFICATION
    status_id_before = Column(Uuid(as_uuid=True), nullable=True)
    status_id_after = Column(Uuid(as_uuid=True), nullable=False)
    status_code_before = Column(String(10), nullable=True)
    status_code_after = Column(String(10), nullable=False)
    notes_before = Column(Text, nullable=True)
    notes_after = Column(Text, nullable=True)
    arrival_time_before = Column(String(5), nullable=True)
    arrival_time_after = Column(String(5), nullable=True)
    justification_added_id = Column(Uuid(as_uuid=True), nullable=True)
    change_reason = Column(Text, nullable=True)
    changed_by = Column(Uuid(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    changed_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)

    attendance = relationship("StudentAttendance", back_populates="changes")
