"""
Shift lifecycle - create, update, complete, cancel, delete, read.

Create is the only writer that does not touch an existing shift and so
runs without a shift lock. Every other writer holds the shift's lock from
ShiftLockRegistry and re-reads the shift after acquiring it, the same
discipline the monitor and the alert response handler follow.

Status flow:
    create             -> IN_PROGRESS
    relief_planned     IN_PROGRESS -> RELIEF_PLANNED (and back when unset)
    sign-off/complete  open -> COMPLETED
    cancel             open -> CANCELLED
"""

import logging
from datetime import datetime
from typing import List, Optional, Tuple

from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session, selectinload

from models import (
    DutyLog, Shift, ShiftAlert, Staff, BUSY_SHIFT_STATUSES, DUTY_TYPES, SHIFT_STATUSES,
)
from schemas_shifts import ShiftCreate, ShiftUpdate
from services import shift_store
from services.duty_hours import SystemClock, as_utc, calculate_duty_hours, round_hours
from services.duty_log import (
    delete_shift_logs, list_shift_logs, write_duty_log, write_duty_log_pair,
)
from services.errors import (
    InvalidInputError, ShiftDeleteError, ShiftTerminalError, StaffConflictError,
)
from services.shift_locks import ShiftLockRegistry
from services.staff_registry import (
    find_or_create_locomotive, find_or_create_staff, find_staff_by_employee_id,
    set_crew_status,
)
from services.thresholds import THRESHOLDS

logger = logging.getLogger(__name__)

# Deletion is refused while the shift is still plain IN_PROGRESS
UNDELETABLE_STATUSES = ('IN_PROGRESS',)

# Shifts shown on the control office board
ACTIVE_SHIFT_STATUSES = ('IN_PROGRESS', 'RELIEF_PLANNED')


def _check_duty_type(duty_type: Optional[str]):
    if duty_type and duty_type not in DUTY_TYPES:
        raise InvalidInputError(f"Invalid duty type: {duty_type}. Valid: {', '.join(DUTY_TYPES)}")


def _busy_staff(db: Session, candidates: List[Tuple[str, Optional[Staff]]]) -> List[str]:
    """
    Labels of candidates already booked (either role) on a SCHEDULED or
    IN_PROGRESS shift without a sign-off.
    """
    known = [(label, staff) for label, staff in candidates if staff is not None]
    if not known:
        return []

    staff_ids = [staff.id for _, staff in known]
    busy_shifts = db.execute(
        select(Shift).where(
            Shift.status.in_(BUSY_SHIFT_STATUSES),
            Shift.sign_off_time.is_(None),
            or_(Shift.loco_pilot_id.in_(staff_ids), Shift.train_manager_id.in_(staff_ids)),
        )
    ).scalars().all()

    busy_ids = set()
    for shift in busy_shifts:
        busy_ids.add(shift.loco_pilot_id)
        busy_ids.add(shift.train_manager_id)

    return [f"{label} {staff.name}" for label, staff in known if staff.id in busy_ids]


# =============================================================================
# CREATE
# =============================================================================

def create_shift(db: Session, data: ShiftCreate) -> Shift:
    """
    Sign on a new shift.

    The busy-staff check runs against existing records before anything is
    written, so a conflict leaves the database untouched.
    """
    _check_duty_type(data.duty_type)
    if data.loco_pilot.employee_id == data.train_manager.employee_id:
        raise InvalidInputError("Loco pilot and train manager must be different people")

    busy = _busy_staff(db, [
        ("Loco Pilot", find_staff_by_employee_id(db, data.loco_pilot.employee_id)),
        ("Train Manager", find_staff_by_employee_id(db, data.train_manager.employee_id)),
    ])
    if busy:
        raise StaffConflictError(busy)

    try:
        locomotive = find_or_create_locomotive(db, data.locomotive_no)
        pilot = find_or_create_staff(
            db, data.loco_pilot.employee_id, data.loco_pilot.name, 'LOCO_PILOT',
            phone=data.loco_pilot.phone,
        )
        manager = find_or_create_staff(
            db, data.train_manager.employee_id, data.train_manager.name, 'TRAIN_MANAGER',
            phone=data.train_manager.phone,
        )

        shift = Shift(
            train_number=data.train_number,
            train_name=data.train_name,
            locomotive_id=locomotive.id,
            locomotive_no=locomotive.locomotive_no,
            loco_pilot_id=pilot.id,
            train_manager_id=manager.id,
            train_arrival_time=data.train_arrival_time,
            sign_on_time=data.sign_on_time,
            take_over_time=data.take_over_time,
            departure_time=data.departure_time,
            sign_on_station=data.sign_on_station,
            sign_off_station=data.sign_off_station,
            section=data.section,
            duty_type=data.duty_type,
            status='IN_PROGRESS',
            relief_required=False,
            relief_planned=False,
            alerts=[ShiftAlert(threshold=threshold, sent=False) for threshold in THRESHOLDS],
        )
        db.add(shift)
        db.flush()

        write_duty_log_pair(
            db, shift, 'SIGN_ON', data.sign_on_time, 0.0,
            remarks="Shift started",
            metadata={"train_number": shift.train_number},
        )
        set_crew_status(db, shift, 'ON_DUTY')
        db.commit()
    except Exception:
        db.rollback()
        raise

    logger.info(f"Shift created: {shift.id} - Train {shift.train_number} ({pilot.name} / {manager.name})")
    return shift_store.get_shift(db, shift.id)


# =============================================================================
# UPDATE / COMPLETE / CANCEL
# =============================================================================

def _complete(db: Session, shift: Shift, sign_off_time: datetime, sign_off_station: Optional[str], remarks: str):
    """Sign off, freeze duty hours, write RELEASE pair, release crew. Caller commits."""
    if as_utc(sign_off_time) < as_utc(shift.sign_on_time):
        raise InvalidInputError("Sign-off time cannot be before sign-on time")

    duty_hours = calculate_duty_hours(shift.sign_on_time, sign_off_time)
    shift.sign_off_time = sign_off_time
    if sign_off_station:
        shift.sign_off_station = sign_off_station
    shift.status = 'COMPLETED'
    shift.duty_hours = round_hours(duty_hours)

    write_duty_log_pair(db, shift, 'RELEASE', sign_off_time, duty_hours, remarks=remarks)
    set_crew_status(db, shift, 'AVAILABLE')


async def update_shift(
    db: Session,
    locks: ShiftLockRegistry,
    shift_id: int,
    data: ShiftUpdate,
    clock=None,
) -> Shift:
    """
    Apply manual corrections. Only fields present in the request are touched.

    take_over_time / departure_time write one pilot log each, carrying duty
    hours as of the update (the entered time goes into the log metadata).
    relief_planned and sign_off_time change
    status and are refused on COMPLETED / CANCELLED shifts.
    """
    clock = clock or SystemClock()
    changes = data.model_dump(exclude_unset=True)
    _check_duty_type(changes.get('duty_type'))

    async with locks.hold(shift_id):
        shift = shift_store.get_shift(db, shift_id)

        if shift.is_terminal and (
            changes.get('sign_off_time') is not None or changes.get('relief_planned') is not None
        ):
            raise ShiftTerminalError(shift.id, shift.status, action="change its status")

        now = clock.now()
        try:
            for field in ('sign_off_station', 'section', 'duty_type', 'relief_reason', 'relief_time'):
                if field in changes:
                    setattr(shift, field, changes[field])
            if changes.get('relief_required') is not None:
                shift.relief_required = changes['relief_required']

            if changes.get('take_over_time') is not None:
                shift.take_over_time = changes['take_over_time']
                write_duty_log(
                    db, shift, shift.loco_pilot_id, 'TAKE_OVER', now,
                    calculate_duty_hours(shift.sign_on_time, now),
                    remarks="Train take over",
                    metadata={"take_over_time": as_utc(shift.take_over_time).isoformat()},
                )

            if changes.get('departure_time') is not None:
                shift.departure_time = changes['departure_time']
                write_duty_log(
                    db, shift, shift.loco_pilot_id, 'DEPARTURE', now,
                    calculate_duty_hours(shift.sign_on_time, now),
                    remarks="Train departed",
                    metadata={"departure_time": as_utc(shift.departure_time).isoformat()},
                )

            if changes.get('relief_planned') is True and not shift.relief_planned:
                shift.relief_planned = True
                shift.status = 'RELIEF_PLANNED'
                write_duty_log_pair(
                    db, shift, 'RELIEF_PLANNED', now,
                    calculate_duty_hours(shift.sign_on_time, now),
                    remarks=shift.relief_reason or "Relief planned",
                )
            elif changes.get('relief_planned') is False and shift.relief_planned:
                shift.relief_planned = False
                if shift.status == 'RELIEF_PLANNED':
                    shift.status = 'IN_PROGRESS'

            if changes.get('sign_off_time') is not None:
                _complete(
                    db, shift, changes['sign_off_time'], changes.get('sign_off_station'),
                    remarks="Signed off",
                )

            db.commit()
        except Exception:
            db.rollback()
            raise

    logger.info(f"Shift updated: {shift_id} ({', '.join(sorted(changes)) or 'no changes'})")
    return shift_store.get_shift(db, shift_id)


async def complete_shift(
    db: Session,
    locks: ShiftLockRegistry,
    shift_id: int,
    sign_off_time: Optional[datetime] = None,
    sign_off_station: Optional[str] = None,
    clock=None,
) -> Shift:
    clock = clock or SystemClock()
    async with locks.hold(shift_id):
        shift = shift_store.get_shift(db, shift_id)
        if not shift.is_open:
            raise ShiftTerminalError(shift.id, shift.status, action="complete it")
        try:
            _complete(db, shift, sign_off_time or clock.now(), sign_off_station, remarks="Shift completed")
            db.commit()
        except Exception:
            db.rollback()
            raise

    logger.info(f"Shift completed: {shift_id}")
    return shift_store.get_shift(db, shift_id)


async def cancel_shift(
    db: Session,
    locks: ShiftLockRegistry,
    shift_id: int,
    reason: Optional[str] = None,
    clock=None,
) -> Shift:
    clock = clock or SystemClock()
    async with locks.hold(shift_id):
        shift = shift_store.get_shift(db, shift_id)
        if not shift.is_open:
            raise ShiftTerminalError(shift.id, shift.status, action="cancel it")

        now = clock.now()
        try:
            shift.status = 'CANCELLED'
            write_duty_log_pair(
                db, shift, 'CANCELLED', now,
                calculate_duty_hours(shift.sign_on_time, now),
                remarks=reason or "Shift cancelled",
            )
            set_crew_status(db, shift, 'AVAILABLE')
            db.commit()
        except Exception:
            db.rollback()
            raise

    logger.info(f"Shift cancelled: {shift_id}")
    return shift_store.get_shift(db, shift_id)


# =============================================================================
# DELETE
# =============================================================================

async def delete_shift(db: Session, locks: ShiftLockRegistry, shift_id: int) -> dict:
    async with locks.hold(shift_id):
        shift = shift_store.get_shift(db, shift_id)
        if shift.status in UNDELETABLE_STATUSES:
            raise ShiftDeleteError(shift.id, shift.status)

        train_number = shift.train_number
        try:
            if shift.is_open:
                set_crew_status(db, shift, 'AVAILABLE')
            deleted_logs = delete_shift_logs(db, shift.id)
            db.delete(shift)
            db.commit()
        except Exception:
            db.rollback()
            raise

    logger.info(f"Shift deleted: {shift_id} - Train {train_number} ({deleted_logs} duty logs)")
    return {"status": "ok", "id": shift_id, "deleted_logs": deleted_logs}


# =============================================================================
# READ
# =============================================================================

def get_shift_detail(db: Session, shift_id: int) -> Tuple[Shift, List[DutyLog]]:
    shift = shift_store.get_shift(db, shift_id)
    return shift, list_shift_logs(db, shift_id)


def get_active_shifts_summary(db: Session) -> List[Shift]:
    """IN_PROGRESS and RELIEF_PLANNED shifts without a sign-off, oldest sign-on first."""
    return list(db.execute(
        select(Shift)
        .options(
            selectinload(Shift.loco_pilot),
            selectinload(Shift.train_manager),
            selectinload(Shift.alerts),
        )
        .where(
            Shift.status.in_(ACTIVE_SHIFT_STATUSES),
            Shift.sign_off_time.is_(None),
        )
        .order_by(Shift.sign_on_time, Shift.id)
    ).scalars().all())


def list_shifts(
    db: Session,
    status: Optional[str] = None,
    train_number: Optional[str] = None,
    loco_pilot_id: Optional[int] = None,
    train_manager_id: Optional[int] = None,
    from_date: Optional[datetime] = None,
    to_date: Optional[datetime] = None,
    page: int = 1,
    limit: int = 20,
) -> Tuple[List[Shift], int]:
    """Filtered, paginated, newest sign-on first. Returns (shifts, total)."""
    if status and status not in SHIFT_STATUSES:
        raise InvalidInputError(f"Invalid status: {status}")

    query = select(Shift)
    if status:
        query = query.where(Shift.status == status)
    if train_number:
        query = query.where(Shift.train_number.ilike(f"%{train_number}%"))
    if loco_pilot_id:
        query = query.where(Shift.loco_pilot_id == loco_pilot_id)
    if train_manager_id:
        query = query.where(Shift.train_manager_id == train_manager_id)
    if from_date:
        query = query.where(Shift.train_arrival_time >= from_date)
    if to_date:
        query = query.where(Shift.train_arrival_time <= to_date)

    total = db.execute(select(func.count()).select_from(query.subquery())).scalar()

    page = max(page, 1)
    shifts = db.execute(
        query.options(
            selectinload(Shift.loco_pilot),
            selectinload(Shift.train_manager),
            selectinload(Shift.alerts),
        )
        .order_by(Shift.sign_on_time.desc(), Shift.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
    ).scalars().all()

    return list(shifts), total
