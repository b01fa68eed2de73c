"""
Shift, staff and alert response Pydantic schemas.

Times are accepted as ISO 8601; values without an offset are treated as UTC.
"""

from pydantic import BaseModel
from typing import Optional, Union
from datetime import datetime


# =============================================================================
# SHIFT SCHEMAS
# =============================================================================

class CrewMember(BaseModel):
    """Crew reference - matched on employee_id, registered if unknown"""
    employee_id: str
    name: str
    phone: Optional[str] = None


class ShiftCreate(BaseModel):
    """Create (sign on) a new shift"""
    train_number: str
    train_name: Optional[str] = None
    locomotive_no: str

    loco_pilot: CrewMember
    train_manager: CrewMember

    train_arrival_time: Optional[datetime] = None
    sign_on_time: datetime
    take_over_time: Optional[datetime] = None
    departure_time: Optional[datetime] = None

    sign_on_station: Optional[str] = None
    sign_off_station: Optional[str] = None
    section: Optional[str] = None
    duty_type: Optional[str] = None         # SP, WR, LR


class ShiftUpdate(BaseModel):
    """
    Manual corrections. Only fields that are sent are applied.
    sign_off_time completes the shift; relief_planned=true moves it to RELIEF_PLANNED.
    """
    take_over_time: Optional[datetime] = None
    departure_time: Optional[datetime] = None
    sign_off_time: Optional[datetime] = None

    sign_off_station: Optional[str] = None
    section: Optional[str] = None
    duty_type: Optional[str] = None

    relief_required: Optional[bool] = None
    relief_planned: Optional[bool] = None
    relief_time: Optional[datetime] = None
    relief_reason: Optional[str] = None


class ShiftComplete(BaseModel):
    """Sign off - defaults to now"""
    sign_off_time: Optional[datetime] = None
    sign_off_station: Optional[str] = None


class ShiftCancel(BaseModel):
    reason: Optional[str] = None


class AlertResponseSubmit(BaseModel):
    """
    Example:
        {"alert_type": "9HR", "response": "CREW_RELIEVED", "remarks": "Relief crew at KGP"}
    """
    alert_type: Union[int, str]             # 8, "8" or "8HR"
    response: str
    remarks: Optional[str] = None


# =============================================================================
# STAFF SCHEMAS
# =============================================================================

class StaffCreate(BaseModel):
    employee_id: str
    name: str
    staff_type: str                         # LOCO_PILOT, TRAIN_MANAGER
    phone: Optional[str] = None
    email: Optional[str] = None
    home_station: Optional[str] = None


class StaffUpdate(BaseModel):
    name: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    home_station: Optional[str] = None
    status: Optional[str] = None            # AVAILABLE, ON_DUTY, ON_LEAVE, RELIEVED, INACTIVE
