"""
Shift Helper Functions

Contains:
- UTC ISO formatting for API output
- Serializers for shifts, alerts, staff and duty logs
"""

from datetime import datetime
from typing import List, Optional

from models import Shift, ShiftAlert, Staff, DutyLog
from services.duty_hours import calculate_duty_hours, round_hours
from services.thresholds import alert_level


# =============================================================================
# UTC ISO FORMATTING - USE THIS EVERYWHERE FOR DATETIME OUTPUT
# =============================================================================

def format_utc_iso(dt) -> Optional[str]:
    """
    Format datetime as ISO 8601 with explicit Z suffix for UTC.

    Without Z: "2025-12-28T23:52:36" - JS treats as LOCAL time (WRONG!)
    With Z:    "2025-12-28T23:52:36Z" - JS treats as UTC (CORRECT!)

    Naive datetimes are assumed to be UTC (SQLite drops tzinfo).
    """
    if dt is None:
        return None
    if hasattr(dt, 'isoformat'):
        iso = dt.isoformat()
        if iso.endswith('+00:00'):
            iso = iso[:-6] + 'Z'
        elif not iso.endswith('Z') and '+' not in iso and '-' not in iso[-6:]:
            iso += 'Z'
        return iso
    return str(dt)


def iso_or_none(obj, attr: str) -> Optional[str]:
    """
    Usage in API responses:
        "sign_on_time": iso_or_none(shift, 'sign_on_time'),
    """
    return format_utc_iso(getattr(obj, attr, None))


# =============================================================================
# SERIALIZERS
# =============================================================================

def staff_to_dict(staff: Optional[Staff]) -> Optional[dict]:
    if staff is None:
        return None
    return {
        "id": staff.id,
        "employee_id": staff.employee_id,
        "name": staff.name,
        "staff_type": staff.staff_type,
        "phone": staff.phone,
        "email": staff.email,
        "home_station": staff.home_station,
        "status": staff.status,
        "auto_created": staff.auto_created,
    }


def alert_to_dict(alert: ShiftAlert) -> dict:
    return {
        "threshold": alert.threshold,
        "alert_type": f"{alert.threshold}HR",
        "sent": alert.sent,
        "sent_at": iso_or_none(alert, 'sent_at'),
        "response": alert.response,
        "responded_at": iso_or_none(alert, 'responded_at'),
    }


def duty_log_to_dict(log: DutyLog) -> dict:
    return {
        "id": log.id,
        "shift_id": log.shift_id,
        "staff_id": log.staff_id,
        "staff_name": log.staff.name if log.staff else None,
        "log_type": log.log_type,
        "log_time": iso_or_none(log, 'log_time'),
        "duty_hours_at_log": log.duty_hours_at_log,
        "remarks": log.remarks,
        "metadata": log.log_metadata,
    }


def shift_to_dict(shift: Shift, now: datetime, duty_logs: Optional[List[DutyLog]] = None) -> dict:
    """
    Serialize a shift. Open shifts report live duty hours as of `now`;
    closed shifts report the frozen value.
    """
    if shift.is_open:
        duty_hours = round_hours(calculate_duty_hours(shift.sign_on_time, now))
    else:
        duty_hours = shift.duty_hours

    result = {
        "id": shift.id,
        "train_number": shift.train_number,
        "train_name": shift.train_name,
        "locomotive_no": shift.locomotive_no,
        "loco_pilot": staff_to_dict(shift.loco_pilot),
        "train_manager": staff_to_dict(shift.train_manager),
        "train_arrival_time": iso_or_none(shift, 'train_arrival_time'),
        "sign_on_time": iso_or_none(shift, 'sign_on_time'),
        "take_over_time": iso_or_none(shift, 'take_over_time'),
        "departure_time": iso_or_none(shift, 'departure_time'),
        "sign_off_time": iso_or_none(shift, 'sign_off_time'),
        "sign_on_station": shift.sign_on_station,
        "sign_off_station": shift.sign_off_station,
        "section": shift.section,
        "duty_type": shift.duty_type,
        "duty_hours": duty_hours,
        "alert_level": alert_level(duty_hours or 0) if shift.is_open else None,
        "status": shift.status,
        "relief_required": shift.relief_required,
        "relief_planned": shift.relief_planned,
        "relief_time": iso_or_none(shift, 'relief_time'),
        "relief_reason": shift.relief_reason,
        "alerts": [alert_to_dict(a) for a in shift.alerts],
        "created_at": iso_or_none(shift, 'created_at'),
        "updated_at": iso_or_none(shift, 'updated_at'),
    }
    if duty_logs is not None:
        result["duty_logs"] = [duty_log_to_dict(log) for log in duty_logs]
    return result
