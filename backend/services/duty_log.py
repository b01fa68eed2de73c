"""
Duty log writer.

Alert and response events are written as a pair - one row for the loco
pilot and one for the train manager - so each person's duty trail is
complete on its own. Nothing here commits; callers own the transaction.
"""

from datetime import datetime
from typing import List, Optional

from sqlalchemy import delete, select
from sqlalchemy.orm import Session, selectinload

from models import DutyLog, Shift, DUTY_LOG_TYPES
from services.duty_hours import round_hours


def write_duty_log(
    db: Session,
    shift: Shift,
    staff_id: int,
    log_type: str,
    logged_at: datetime,
    duty_hours: Optional[float],
    remarks: Optional[str] = None,
    metadata: Optional[dict] = None,
) -> DutyLog:
    if log_type not in DUTY_LOG_TYPES:
        raise ValueError(f"Unknown duty log type: {log_type}")
    entry = DutyLog(
        shift_id=shift.id,
        staff_id=staff_id,
        log_type=log_type,
        log_time=logged_at,
        duty_hours_at_log=round_hours(duty_hours) if duty_hours is not None else None,
        remarks=remarks,
        log_metadata=metadata,
    )
    db.add(entry)
    return entry


def write_duty_log_pair(
    db: Session,
    shift: Shift,
    log_type: str,
    logged_at: datetime,
    duty_hours: Optional[float],
    remarks: Optional[str] = None,
    metadata: Optional[dict] = None,
) -> List[DutyLog]:
    """One row per crew member, identical apart from staff_id."""
    return [
        write_duty_log(
            db, shift, staff_id, log_type, logged_at, duty_hours,
            remarks=remarks, metadata=dict(metadata) if metadata else None,
        )
        for staff_id in (shift.loco_pilot_id, shift.train_manager_id)
    ]


def list_shift_logs(db: Session, shift_id: int) -> List[DutyLog]:
    """Newest first."""
    return list(db.execute(
        select(DutyLog)
        .options(selectinload(DutyLog.staff))
        .where(DutyLog.shift_id == shift_id)
        .order_by(DutyLog.log_time.desc(), DutyLog.id.desc())
    ).scalars().all())


def list_staff_logs(db: Session, staff_id: int, limit: int = 100) -> List[DutyLog]:
    return list(db.execute(
        select(DutyLog)
        .where(DutyLog.staff_id == staff_id)
        .order_by(DutyLog.log_time.desc(), DutyLog.id.desc())
        .limit(limit)
    ).scalars().all())


def delete_shift_logs(db: Session, shift_id: int) -> int:
    result = db.execute(delete(DutyLog).where(DutyLog.shift_id == shift_id))
    return result.rowcount
