"""
Shifts router - sign on, corrections, sign off and alert responses

Domain errors (services/errors.py) propagate to the handler in main.py.
"""

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session
from typing import Optional
from datetime import datetime

from database import get_db
from dependencies import get_clock, get_shift_locks
from schemas_shifts import (
    AlertResponseSubmit, ShiftCancel, ShiftComplete, ShiftCreate, ShiftUpdate,
)
from services import shift_service
from services.alert_response import get_alert_history, record_alert_response
from services.shift_locks import ShiftLockRegistry
from services.thresholds import get_policy
from shift_helpers import format_utc_iso, shift_to_dict
from routers.websocket import broadcast_event

router = APIRouter()


@router.get("")
async def list_shifts(
    status: Optional[str] = None,
    train_number: Optional[str] = None,
    loco_pilot_id: Optional[int] = None,
    train_manager_id: Optional[int] = None,
    from_date: Optional[datetime] = None,
    to_date: Optional[datetime] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=200),
    db: Session = Depends(get_db),
    clock=Depends(get_clock),
):
    """List shifts, newest sign-on first"""
    shifts, total = shift_service.list_shifts(
        db,
        status=status,
        train_number=train_number,
        loco_pilot_id=loco_pilot_id,
        train_manager_id=train_manager_id,
        from_date=from_date,
        to_date=to_date,
        page=page,
        limit=limit,
    )
    now = clock.now()
    return {
        "shifts": [shift_to_dict(s, now) for s in shifts],
        "total": total,
        "page": page,
        "limit": limit,
        "pages": (total + limit - 1) // limit,
    }


@router.get("/active/summary")
async def active_shifts_summary(db: Session = Depends(get_db), clock=Depends(get_clock)):
    """Control office board - open shifts with live duty hours and alert level"""
    shifts = shift_service.get_active_shifts_summary(db)
    now = clock.now()
    return {
        "total_active": len(shifts),
        "shifts": [shift_to_dict(s, now) for s in shifts],
    }


@router.get("/{id}")
async def get_shift(id: int, db: Session = Depends(get_db), clock=Depends(get_clock)):
    """Shift with duty logs (newest first)"""
    shift, logs = shift_service.get_shift_detail(db, id)
    return shift_to_dict(shift, clock.now(), duty_logs=logs)


@router.post("", status_code=201)
async def create_shift(
    data: ShiftCreate,
    db: Session = Depends(get_db),
    clock=Depends(get_clock),
):
    """Sign on a new shift"""
    shift = shift_service.create_shift(db, data)

    await broadcast_event("shift_created", {
        "shift_id": shift.id,
        "train_number": shift.train_number,
        "loco_pilot": shift.loco_pilot.name,
        "train_manager": shift.train_manager.name,
    })
    return shift_to_dict(shift, clock.now())


@router.put("/{id}")
async def update_shift(
    id: int,
    data: ShiftUpdate,
    db: Session = Depends(get_db),
    locks: ShiftLockRegistry = Depends(get_shift_locks),
    clock=Depends(get_clock),
):
    """Manual corrections - take over, departure, relief, sign off"""
    shift = await shift_service.update_shift(db, locks, id, data, clock=clock)
    now = clock.now()
    result = shift_to_dict(shift, now)

    await broadcast_event("shift_updated", {
        "shift_id": shift.id,
        "status": shift.status,
        "duty_hours": result["duty_hours"],
    }, shift_id=shift.id)
    if shift.status == 'COMPLETED' and data.sign_off_time is not None:
        await _announce_completed(shift, now)
    return result


@router.post("/{id}/complete")
async def complete_shift(
    id: int,
    data: Optional[ShiftComplete] = None,
    db: Session = Depends(get_db),
    locks: ShiftLockRegistry = Depends(get_shift_locks),
    clock=Depends(get_clock),
):
    """Sign off (defaults to now)"""
    data = data or ShiftComplete()
    shift = await shift_service.complete_shift(
        db, locks, id,
        sign_off_time=data.sign_off_time,
        sign_off_station=data.sign_off_station,
        clock=clock,
    )
    now = clock.now()
    await _announce_completed(shift, now)
    return shift_to_dict(shift, now)


@router.post("/{id}/cancel")
async def cancel_shift(
    id: int,
    data: Optional[ShiftCancel] = None,
    db: Session = Depends(get_db),
    locks: ShiftLockRegistry = Depends(get_shift_locks),
    clock=Depends(get_clock),
):
    data = data or ShiftCancel()
    shift = await shift_service.cancel_shift(db, locks, id, reason=data.reason, clock=clock)
    await broadcast_event("shift_cancelled", {"shift_id": shift.id}, shift_id=shift.id)
    return shift_to_dict(shift, clock.now())


@router.delete("/{id}")
async def delete_shift(
    id: int,
    db: Session = Depends(get_db),
    locks: ShiftLockRegistry = Depends(get_shift_locks),
):
    """Delete a shift and its duty logs (not while IN_PROGRESS)"""
    return await shift_service.delete_shift(db, locks, id)


# =============================================================================
# ALERT RESPONSES
# =============================================================================

@router.post("/{id}/alert-response")
async def submit_alert_response(
    id: int,
    data: AlertResponseSubmit,
    db: Session = Depends(get_db),
    locks: ShiftLockRegistry = Depends(get_shift_locks),
    clock=Depends(get_clock),
):
    """
    Record the control office decision for a sent alert.

    Example:
        POST /api/shifts/12/alert-response
        {"alert_type": "8HR", "response": "PLAN_RELIEF"}
    """
    policy = get_policy(data.alert_type)
    shift = await record_alert_response(
        db, locks, id, policy.hours, data.response,
        remarks=data.remarks,
        clock=clock,
    )
    now = clock.now()

    await broadcast_event("alert_response", {
        "shift_id": shift.id,
        "alert_type": policy.alert_type,
        "response": data.response,
        "status": shift.status,
        "timestamp": format_utc_iso(now),
    }, shift_id=shift.id)
    if shift.status == 'COMPLETED':
        await _announce_completed(shift, now)

    return {
        "status": "ok",
        "message": "Alert response recorded",
        "shift": shift_to_dict(shift, now),
    }


@router.get("/{id}/alert-history")
async def alert_history(id: int, db: Session = Depends(get_db)):
    return get_alert_history(db, id)


async def _announce_completed(shift, now: datetime):
    await broadcast_event("shift_completed", {
        "shift_id": shift.id,
        "train_number": shift.train_number,
        "duty_hours": shift.duty_hours,
        "timestamp": format_utc_iso(now),
    }, shift_id=shift.id)
