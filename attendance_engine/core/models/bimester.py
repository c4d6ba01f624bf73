"""Bimesters and academic weeks: the calendar units inside a school cycle."""

import uuid
from datetime import datetime

from sqlalchemy import Boolean, Column, Date, DateTime, ForeignKey, Integer, String, UniqueConstraint, Uuid
from sqlalchemy.orm import relationship

from attendance_engine.core.enums import WeekType
from attendance_engine.db.session import Base


class Bimester(Base):
    """Ordered sub-period of a cycle. At most one bimester per cycle is active."""

    __tablename__ = "bimesters"
    __table_args__ = (UniqueConstraint("cycle_id", "number", name="uq_bimester_cycle_number"),)

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    cycle_id = Column(Uuid(as_uuid=True), ForeignKey("school_cycles.id", ondelete="CASCADE"), nullable=False, index=True)
    number = Column(Integer, nullable=False)
    name = Column(String(100), nullable=True)
    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=False)
    is_active = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)

    cycle = relationship("SchoolCycle", backref="bimesters")


class AcademicWeek(Base):
    """Week inside a bimester. Weeks of a bimester are contiguous and never overlap."""

    __tablename__ = "academic_weeks"
    __table_args__ = (UniqueConstraint("bimester_id", "number", name="uq_week_bimester_number"),)

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    bimester_id = Column(Uuid(as_uuid=True), ForeignKey("bimesters.id", ondelete="CASCADE"), nullable=False, index=True)
    number = Column(Integer, nullable=False)
    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=False)
    week_type = Column(String(20), nullable=False, default=WeekType.REGULAR.value)  # REGULAR | EVALUATION | BREAK
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)

    bimester = relationship("Bimester", backref="weeks")


class Holiday(Base):
    """Non-instructional day or date range. A recovered holiday is made up and counts as a school day."""

    __tablename__ = "holidays"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    cycle_id = Column(Uuid(as_uuid=True), ForeignKey("school_cycles.id", ondelete="CASCADE"), nullable=False, index=True)
    bimester_id = Column(Uuid(as_uuid=True), ForeignKey("bimesters.id", ondelete="SET NULL"), nullable=True)
    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=False)
    description = Column(String(255), nullable=False)
    is_recovered = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
