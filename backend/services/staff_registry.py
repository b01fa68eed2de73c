"""
Staff and locomotive registry.

Crew and locomotives are referenced by employee id / locomotive number on
shift creation and registered on first use (auto_created=True).
"""

import logging
from typing import List, Optional

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from models import Locomotive, Shift, Staff, STAFF_STATUSES, STAFF_TYPES
from services.errors import InvalidInputError, StaffNotFoundError

logger = logging.getLogger(__name__)


def get_staff(db: Session, staff_id: int) -> Staff:
    staff = db.get(Staff, staff_id)
    if not staff:
        raise StaffNotFoundError(staff_id)
    return staff


def find_staff_by_employee_id(db: Session, employee_id: str) -> Optional[Staff]:
    return db.execute(
        select(Staff).where(Staff.employee_id == employee_id)
    ).scalars().first()


def find_or_create_staff(
    db: Session,
    employee_id: str,
    name: str,
    staff_type: str,
    phone: Optional[str] = None,
) -> Staff:
    """Existing staff get name/phone refreshed; unknown ids are registered. Does not commit."""
    if staff_type not in STAFF_TYPES:
        raise InvalidInputError(f"Invalid staff type: {staff_type}")

    staff = find_staff_by_employee_id(db, employee_id)
    if staff is None:
        staff = Staff(
            employee_id=employee_id,
            name=name,
            staff_type=staff_type,
            phone=phone,
            status='AVAILABLE',
            auto_created=True,
        )
        db.add(staff)
        db.flush()
        logger.info(f"Staff created: {name} ({employee_id})")
        return staff

    if name and staff.name != name:
        staff.name = name
    if phone and staff.phone != phone:
        staff.phone = phone
    return staff


def find_or_create_locomotive(db: Session, locomotive_no: str) -> Locomotive:
    loco = db.execute(
        select(Locomotive).where(Locomotive.locomotive_no == locomotive_no)
    ).scalars().first()
    if loco is None:
        loco = Locomotive(locomotive_no=locomotive_no, auto_created=True)
        db.add(loco)
        db.flush()
        logger.info(f"Locomotive created: {locomotive_no}")
    return loco


def set_crew_status(db: Session, shift: Shift, status: str):
    """Flip both crew members of a shift. Does not commit."""
    if status not in STAFF_STATUSES:
        raise InvalidInputError(f"Invalid staff status: {status}")
    db.execute(
        update(Staff)
        .where(Staff.id.in_([shift.loco_pilot_id, shift.train_manager_id]))
        .values(status=status)
        .execution_options(synchronize_session="fetch")
    )


def list_staff(
    db: Session,
    status: Optional[str] = None,
    staff_type: Optional[str] = None,
    search: Optional[str] = None,
) -> List[Staff]:
    query = select(Staff)
    if status:
        query = query.where(Staff.status == status)
    if staff_type:
        query = query.where(Staff.staff_type == staff_type)
    if search:
        pattern = f"%{search}%"
        query = query.where(Staff.name.ilike(pattern) | Staff.employee_id.ilike(pattern))
    return list(db.execute(query.order_by(Staff.name)).scalars().all())
