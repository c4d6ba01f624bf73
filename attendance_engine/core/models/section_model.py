"""Sections (e.g. A, B, C) under a grade. Section name is unique per grade."""
import uuid
from datetime import datetime

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String, UniqueConstraint, Uuid
from sqlalchemy.orm import relationship

from attendance_engine.db.session import Base


class Section(Base):
    """Section belongs to a grade. teacher_id is the homeroom teacher (at most one)."""

    __tablename__ = "sections"
    __table_args__ = (UniqueConstraint("grade_id", "name", name="uq_section_grade_name"),)

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    grade_id = Column(Uuid(as_uuid=True), ForeignKey("grades.id"), nullable=False, index=True)
    name = Column(String(50), nullable=False)
    capacity = Column(Integer, nullable=False, default=30)
    teacher_id = Column(Uuid(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    grade = relationship("Grade", backref="sections", foreign_keys=[grade_id])
    homeroom_teacher = relationship("User", foreign_keys=[teacher_id])
