"""Administrator-owned attendance catalog: statuses, per-role status permissions and the active configuration."""

import uuid
from datetime import datetime

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import relationship

from attendance_engine.db.session import Base


class AttendanceStatus(Base):
    """Configurable status (e.g. P present, I absent, TI unjustified tardy). Flags drive every rule."""

    __tablename__ = "attendance_statuses"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    code = Column(String(10), nullable=False, unique=True)
    name = Column(String(100), nullable=False)
    description = Column(Text, nullable=True)
    is_negative = Column(Boolean, nullable=False, default=False)
    is_excused = Column(Boolean, nullable=False, default=False)
    is_temporal = Column(Boolean, nullable=False, default=False)
    requires_justification = Column(Boolean, nullable=False, default=False)
    can_have_notes = Column(Boolean, nullable=False, default=True)
    color_code = Column(String(20), nullable=True)
    order = Column(Integer, nullable=False, default=0)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)


class RoleAttendancePermission(Base):
    """Which statuses a role may assign (create) or change records to (modify)."""

    __tablename__ = "role_attendance_permissions"
    __table_args__ = (
        UniqueConstraint("role_id", "attendance_status_id", name="uq_role_attendance_status"),
    )

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    role_id = Column(Uuid(as_uuid=True), ForeignKey("roles.id", ondelete="CASCADE"), nullable=False, index=True)
    attendance_status_id = Column(
        Uuid(as_uuid=True),
        ForeignKey("attendance_statuses.id", ondelete="CASCADE"),
        nullable=False,
    )
    can_create = Column(Boolean, nullable=False, default=True)
    can_modify = Column(Boolean, nullable=False, default=False)

    status = relationship("AttendanceStatus")


class AttendanceConfig(Base):
    """Business thresholds. Exactly one row is_active."""

    __tablename__ = "attendance_configs"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name = Column(String(100), nullable=False)
    risk_threshold_percentage = Column(Float, nullable=False)
    consecutive_absence_alert = Column(Integer, nullable=False)
    late_threshold_time = Column(String(5), nullable=False)  # HH:MM
    mark_as_tardy_after_minutes = Column(Integer, nullable=False)
    justification_required_after = Column(Integer, nullable=False)
    max_justification_days = Column(Integer, nullable=False)
    auto_approve_justification = Column(Boolean, nullable=False, default=False)
    auto_approval_after_days = Column(Integer, nullable=False)
    notes_required_for_states = Column(JSON, nullable=False, default=list)  # ["IJ", "TJ"]
    justified_status_map = Column(JSON, nullable=False, default=dict)  # {"I": "IJ", "TI": "TJ"}
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)
