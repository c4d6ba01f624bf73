import uuid
from datetime import datetime

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    UniqueConstraint,
    Uuid,
    text,
)

from attendance_engine.db.session import Base


class StudentAttendanceReport(Base):
    """Materialized aggregate per (enrollment, bimester, course|NULL). Recomputed, never hand-edited."""

    __tablename__ = "student_attendance_reports"
    __table_args__ = (
        UniqueConstraint("enrollment_id", "bimester_id", "course_id", name="uq_report_enrollment_bimester_course"),
        Index(
            "uq_report_enrollment_bimester_overall",
            "enrollment_id", "bimester_id",
            unique=True,
            postgresql_where=text("course_id IS NULL"),
            sqlite_where=text("course_id IS NULL"),
        ),
    )

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    enrollment_id = Column(Uuid(as_uuid=True), ForeignKey("enrollments.id", ondelete="CASCADE"), nullable=False, index=True)
    bimester_id = Column(Uuid(as_uuid=True), ForeignKey("bimesters.id", ondelete="CASCADE"), nullable=False, index=True)
    course_id = Column(Uuid(as_uuid=True), ForeignKey("courses.id", ondelete="CASCADE"), nullable=True)

    total_marked = Column(Integer, nullable=False, default=0)
    count_present = Column(Integer, nullable=False, default=0)
    count_absent = Column(Integer, nullable=False, default=0)
    count_absent_justified = Column(Integer, nullable=False, default=0)
    count_tardy = Column(Integer, nullable=False, default=0)
    count_tardy_justified = Column(Integer, nullable=False, default=0)
    attendance_percentage = Column(Float, nullable=False, default=100.0)
    absence_percentage = Column(Float, nullable=False, default=0.0)
    consecutive_absences = Column(Integer, nullable=False, default=0)
    is_at_risk = Column(Boolean, nullable=False, default=False)
    needs_intervention = Column(Boolean, nullable=False, default=False)
    # Set when aggregation exhausted its retries; cleared on the next successful recalculation.
    is_stale = Column(Boolean, nullable=False, default=False)
    last_calculated_at = Column(DateTime(timezone=True), nullable=True)
