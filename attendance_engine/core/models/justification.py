"""Absence justifications: pending -> approved | rejected."""

import uuid
from datetime import datetime

from sqlalchemy import Boolean, Column, Date, DateTime, ForeignKey, String, Text, Uuid
from sqlalchemy.orm import relationship

from attendance_engine.core.enums import JustificationStatus
from attendance_engine.db.session import Base


class StudentJustification(Base):
    __tablename__ = "student_justifications"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    enrollment_id = Column(Uuid(as_uuid=True), ForeignKey("enrollments.id", ondelete="CASCADE"), nullable=False, index=True)
    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=False)
    type = Column(String(50), nullable=False)  # medical, family, other...
    reason = Column(Text, nullable=False)
    description = Column(Text, nullable=True)
    document_url = Column(String(500), nullable=True)
    status = Column(String(20), nullable=False, default=JustificationStatus.pending.value, index=True)
    approved_by = Column(Uuid(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    approved_at = Column(DateTime(timezone=True), nullable=True)
    rejection_reason = Column(Text, nullable=True)
    auto_approved = Column(Boolean, nullable=False, default=False)
    submitted_by = Column(Uuid(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    submitted_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    enrollment = relationship("Enrollment", foreign_keys=[enrollment_id])
