"""
Staff router - loco pilots and train managers
"""

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session
from typing import Optional
from datetime import datetime, timezone

from database import get_db
from models import Staff, STAFF_STATUSES, STAFF_TYPES
from schemas_shifts import StaffCreate, StaffUpdate
from services.duty_log import list_staff_logs
from services.staff_registry import find_staff_by_employee_id, get_staff, list_staff
from shift_helpers import duty_log_to_dict, staff_to_dict

router = APIRouter()


@router.get("")
async def list_all_staff(
    status: Optional[str] = None,
    staff_type: Optional[str] = None,
    search: Optional[str] = None,
    db: Session = Depends(get_db)
):
    """List staff, optionally filtered by status / type / name or employee id"""
    return [staff_to_dict(s) for s in list_staff(db, status=status, staff_type=staff_type, search=search)]


@router.get("/{id}")
async def get_single_staff(id: int, db: Session = Depends(get_db)):
    return staff_to_dict(get_staff(db, id))


@router.get("/{id}/duty-logs")
async def staff_duty_logs(
    id: int,
    limit: int = Query(100, ge=1, le=1000),
    db: Session = Depends(get_db)
):
    """Per-person duty trail, newest first"""
    staff = get_staff(db, id)
    return {
        "staff": staff_to_dict(staff),
        "duty_logs": [duty_log_to_dict(log) for log in list_staff_logs(db, id, limit=limit)],
    }


@router.post("", status_code=201)
async def create_staff(
    data: StaffCreate,
    db: Session = Depends(get_db)
):
    """Register a staff member"""
    if data.staff_type not in STAFF_TYPES:
        raise HTTPException(status_code=400, detail=f"Invalid staff type: {data.staff_type}")
    if find_staff_by_employee_id(db, data.employee_id):
        raise HTTPException(status_code=409, detail=f"Employee ID {data.employee_id} already exists")

    staff = Staff(
        employee_id=data.employee_id,
        name=data.name,
        staff_type=data.staff_type,
        phone=data.phone,
        email=data.email,
        home_station=data.home_station,
        status='AVAILABLE',
        auto_created=False,
    )

    db.add(staff)
    db.commit()
    db.refresh(staff)

    return staff_to_dict(staff)


@router.put("/{id}")
async def update_staff(
    id: int,
    data: StaffUpdate,
    db: Session = Depends(get_db)
):
    """Update staff details"""
    staff = get_staff(db, id)

    update_data = data.model_dump(exclude_unset=True)
    if update_data.get('status') and update_data['status'] not in STAFF_STATUSES:
        raise HTTPException(status_code=400, detail=f"Invalid status: {update_data['status']}")

    for field, value in update_data.items():
        setattr(staff, field, value)

    staff.updated_at = datetime.now(timezone.utc)
    db.commit()
    db.refresh(staff)

    return staff_to_dict(staff)
