"""Students and their enrollments. Enrollment status changes are appended to a history table."""

import uuid
from datetime import date, datetime

from sqlalchemy import Column, Date, DateTime, ForeignKey, String, Text, UniqueConstraint, Uuid
from sqlalchemy.orm import relationship

from attendance_engine.core.enums import EnrollmentStatus
from attendance_engine.db.session import Base


class Student(Base):
    __tablename__ = "students"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    code = Column(String(30), nullable=True, unique=True)
    given_names = Column(String(150), nullable=False)
    last_names = Column(String(150), nullable=False)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)

    @property
    def full_name(self) -> str:
        return f"{self.given_names} {self.last_names}".strip()


class Enrollment(Base):
    """One student in one section for one cycle."""

    __tablename__ = "enrollments"
    __table_args__ = (UniqueConstraint("student_id", "cycle_id", name="uq_enrollment_student_cycle"),)

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    student_id = Column(Uuid(as_uuid=True), ForeignKey("students.id", ondelete="CASCADE"), nullable=False)
    section_id = Column(Uuid(as_uuid=True), ForeignKey("sections.id", ondelete="RESTRICT"), nullable=False, index=True)
    cycle_id = Column(Uuid(as_uuid=True), ForeignKey("school_cycles.id", ondelete="RESTRICT"), nullable=False, index=True)
    status = Column(String(20), nullable=False, default=EnrollmentStatus.ACTIVE.value)
    date_enrolled = Column(Date, nullable=False, default=date.today)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)

    student = relationship("Student", backref="enrollments")
    section = relationship("Section", foreign_keys=[section_id])
    cycle = relationship("SchoolCycle", foreign_keys=[cycle_id])


class EnrollmentStatusChange(Base):
    """Append-only history of enrollment status transitions."""

    __tablename__ = "enrollment_status_changes"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    enrollment_id = Column(Uuid(as_uuid=True), ForeignKey("enrollments.id", ondelete="CASCADE"), nullable=False, index=True)
    previous_status = Column(String(20), nullable=True)
    new_status = Column(String(20), nullable=False)
    reason = Column(Text, nullable=True)
    changed_by = Column(Uuid(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    changed_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
