import uuid
from datetime import datetime

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String, UniqueConstraint, Uuid
from sqlalchemy.orm import relationship

from attendance_engine.db.session import Base


class Grade(Base):
    """School grade (e.g. "Primero Primaria")."""

    __tablename__ = "grades"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name = Column(String(100), nullable=False)
    level = Column(String(50), nullable=True)  # e.g. Primaria, Secundaria
    display_order = Column(Integer, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)


class GradeCycle(Base):
    """Grades offered in a cycle."""

    __tablename__ = "grade_cycles"
    __table_args__ = (UniqueConstraint("grade_id", "cycle_id", name="uq_grade_cycle"),)

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    grade_id = Column(Uuid(as_uuid=True), ForeignKey("grades.id", ondelete="CASCADE"), nullable=False)
    cycle_id = Column(Uuid(as_uuid=True), ForeignKey("school_cycles.id", ondelete="CASCADE"), nullable=False, index=True)

    grade = relationship("Grade")
