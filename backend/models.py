"""
SQLAlchemy models for the Duty Hours Monitor

Shift alert state is stored as one ShiftAlert row per threshold level
(7/8/9/10/11/14) rather than a column triple per level, so the monitor and
the response handler iterate alerts generically.
"""

from sqlalchemy import (
    Column, Integer, String, Boolean, Text, Float, ForeignKey, DateTime, JSON,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from database import Base


# Portable JSON column: JSONB on PostgreSQL, plain JSON elsewhere (SQLite tests)
JSONType = JSON().with_variant(JSONB(), "postgresql")


# =============================================================================
# STATUS VOCABULARIES
# =============================================================================

SHIFT_STATUSES = ['SCHEDULED', 'IN_PROGRESS', 'RELIEF_PLANNED', 'COMPLETED', 'CANCELLED']
OPEN_SHIFT_STATUSES = ('SCHEDULED', 'IN_PROGRESS', 'RELIEF_PLANNED')
TERMINAL_SHIFT_STATUSES = ('COMPLETED', 'CANCELLED')

# Statuses that block a staff member from being booked on another shift
BUSY_SHIFT_STATUSES = ('SCHEDULED', 'IN_PROGRESS')

STAFF_TYPES = ['LOCO_PILOT', 'TRAIN_MANAGER']
STAFF_STATUSES = ['AVAILABLE', 'ON_DUTY', 'ON_LEAVE', 'RELIEVED', 'INACTIVE']

DUTY_TYPES = ['SP', 'WR', 'LR']

DUTY_LOG_TYPES = [
    'SIGN_ON', 'TAKE_OVER', 'DEPARTURE',
    'ALERT_7HR', 'ALERT_8HR', 'ALERT_9HR', 'ALERT_10HR', 'ALERT_11HR', 'ALERT_14HR',
    'RELIEF_PLANNED', 'RELIEF_NOT_REQUIRED', 'CREW_RELIEVED', 'CREW_NOT_BOOKED',
    'KEEP_ON_DUTY', 'CREW_ALREADY_RELIEVED', 'SHIFT_ENDING',
    'CANCELLED', 'RELEASE',
]


# =============================================================================
# STAFF & LOCOMOTIVES
# =============================================================================

class Staff(Base):
    """Loco pilots and train managers"""
    __tablename__ = "staff"

    id = Column(Integer, primary_key=True)
    employee_id = Column(String(50), unique=True, nullable=False, index=True)
    name = Column(String(100), nullable=False)
    staff_type = Column(String(20), nullable=False)           # LOCO_PILOT, TRAIN_MANAGER
    phone = Column(String(30))
    email = Column(String(255))
    home_station = Column(String(100))
    status = Column(String(20), nullable=False, default='AVAILABLE')
    auto_created = Column(Boolean, default=False)              # Registered on first shift booking

    created_at = Column(DateTime(timezone=True), default=func.current_timestamp())
    updated_at = Column(DateTime(timezone=True), default=func.current_timestamp(),
                        onupdate=func.current_timestamp())

    @property
    def contact(self):
        """Contact block included in alert payloads"""
        return {
            "id": self.id,
            "employee_id": self.employee_id,
            "name": self.name,
            "phone": self.phone,
        }


class Locomotive(Base):
    __tablename__ = "locomotives"

    id = Column(Integer, primary_key=True)
    locomotive_no = Column(String(30), unique=True, nullable=False)
    auto_created = Column(Boolean, default=False)
    created_at = Column(DateTime(timezone=True), default=func.current_timestamp())


# =============================================================================
# SHIFT - MAIN TABLE
# =============================================================================

class Shift(Base):
    """
    One tracked duty period for a loco pilot + train manager pair.

    sign_off_time is set if and only if status is COMPLETED.
    duty_hours is frozen at completion; open shifts compute it live.
    """
    __tablename__ = "shifts"

    id = Column(Integer, primary_key=True)

    # Train & locomotive
    train_number = Column(String(20), nullable=False, index=True)
    train_name = Column(String(100))
    locomotive_id = Column(Integer, ForeignKey("locomotives.id"))
    locomotive_no = Column(String(30))                          # Denormalized for alert payloads

    # Crew (never change after creation)
    loco_pilot_id = Column(Integer, ForeignKey("staff.id"), nullable=False, index=True)
    train_manager_id = Column(Integer, ForeignKey("staff.id"), nullable=False, index=True)

    # Time tracking
    train_arrival_time = Column(DateTime(timezone=True))
    sign_on_time = Column(DateTime(timezone=True), nullable=False, index=True)
    take_over_time = Column(DateTime(timezone=True))
    departure_time = Column(DateTime(timezone=True))
    sign_off_time = Column(DateTime(timezone=True))

    sign_on_station = Column(String(100))
    sign_off_station = Column(String(100))
    section = Column(String(100))
    duty_type = Column(String(2))                               # SP, WR, LR
    duty_hours = Column(Float)

    status = Column(String(20), nullable=False, default='IN_PROGRESS', index=True)

    # Relief
    relief_required = Column(Boolean, nullable=False, default=False)
    relief_planned = Column(Boolean, nullable=False, default=False)
    relief_time = Column(DateTime(timezone=True))
    relief_reason = Column(Text)

    created_at = Column(DateTime(timezone=True), default=func.current_timestamp())
    updated_at = Column(DateTime(timezone=True), default=func.current_timestamp(),
                        onupdate=func.current_timestamp())

    locomotive = relationship("Locomotive")
    loco_pilot = relationship("Staff", foreign_keys=[loco_pilot_id])
    train_manager = relationship("Staff", foreign_keys=[train_manager_id])
    alerts = relationship(
        "ShiftAlert",
        back_populates="shift",
        order_by="ShiftAlert.threshold",
        cascade="all, delete-orphan",
    )

    @property
    def is_open(self):
        return self.status in OPEN_SHIFT_STATUSES and self.sign_off_time is None

    @property
    def is_terminal(self):
        return self.status in TERMINAL_SHIFT_STATUSES

    @property
    def crew(self):
        return [self.loco_pilot, self.train_manager]

    def alert_for(self, threshold: int):
        for alert in self.alerts:
            if alert.threshold == threshold:
                return alert
        return None

    def sent_thresholds(self):
        return {alert.threshold for alert in self.alerts if alert.sent}


class ShiftAlert(Base):
    """
    Alert state for one (shift, threshold) pair.

    response is only ever set on a sent alert; the 7 hour level is
    informational and never carries a response.
    """
    __tablename__ = "shift_alerts"
    __table_args__ = (
        UniqueConstraint("shift_id", "threshold", name="uq_shift_alerts_shift_threshold"),
    )

    id = Column(Integer, primary_key=True)
    shift_id = Column(Integer, ForeignKey("shifts.id", ondelete="CASCADE"), nullable=False, index=True)
    threshold = Column(Integer, nullable=False)                 # 7, 8, 9, 10, 11, 14
    sent = Column(Boolean, nullable=False, default=False)
    sent_at = Column(DateTime(timezone=True))
    response = Column(String(30))                               # PLAN_RELIEF, CREW_RELIEVED, ...
    responded_at = Column(DateTime(timezone=True))

    shift = relationship("Shift", back_populates="alerts")


# =============================================================================
# DUTY LOG - per-person audit trail
# =============================================================================

class DutyLog(Base):
    """
    Append-only duty audit record. Alert and response events always write
    one row per crew member so each person has a complete trail.
    """
    __tablename__ = "duty_logs"

    id = Column(Integer, primary_key=True)
    shift_id = Column(Integer, ForeignKey("shifts.id"), nullable=False, index=True)
    staff_id = Column(Integer, ForeignKey("staff.id"), nullable=False, index=True)
    log_type = Column(String(30), nullable=False, index=True)
    log_time = Column(DateTime(timezone=True), nullable=False, index=True)
    duty_hours_at_log = Column(Float)                           # Snapshot, never recomputed
    remarks = Column(Text)
    log_metadata = Column("metadata", JSONType)

    staff = relationship("Staff")
