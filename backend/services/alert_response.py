"""
Alert response handling - applies a human decision to a sent alert.

    record_alert_response(shift_id, threshold, response_code, remarks)
        1. Resolve (threshold, response_code) to a Transition - bad codes are
           rejected before the shift is even read
        2. Under the shift lock, re-read the shift and reject if it is
           terminal, the alert was never sent, or it was already answered
        3. Apply alert.response, status and relief flags from the Transition
        4. Write the duty log pair
        5. If the Transition completes the shift: sign off now, freeze duty
           hours, release both crew members to AVAILABLE
        6. Commit - any failure rolls back all of the above

    get_alert_history(shift_id)
        Sent alerts in threshold order with their responses.
"""

import logging
from typing import List, Optional, Union

from sqlalchemy.orm import Session

from models import Shift
from services import shift_store
from services.duty_hours import SystemClock, calculate_duty_hours, round_hours
from services.duty_log import write_duty_log_pair
from services.errors import (
    AlertAlreadyAnsweredError, AlertNotSentError, ShiftTerminalError,
)
from services.shift_locks import ShiftLockRegistry
from services.staff_registry import set_crew_status
from services.thresholds import get_policy, lookup_transition
from shift_helpers import format_utc_iso

logger = logging.getLogger(__name__)


async def record_alert_response(
    db: Session,
    locks: ShiftLockRegistry,
    shift_id: int,
    threshold: Union[int, str],
    response_code: str,
    remarks: Optional[str] = None,
    clock=None,
) -> Shift:
    clock = clock or SystemClock()
    policy = get_policy(threshold)
    transition = lookup_transition(policy.hours, response_code)

    async with locks.hold(shift_id):
        shift = shift_store.get_shift(db, shift_id)
        if shift.is_terminal:
            raise ShiftTerminalError(shift.id, shift.status, action="record an alert response")

        alert = shift.alert_for(policy.hours)
        if alert is None or not alert.sent:
            raise AlertNotSentError(shift.id, policy.hours)
        if alert.response:
            raise AlertAlreadyAnsweredError(shift.id, policy.hours, alert.response)

        now = clock.now()
        duty_hours = calculate_duty_hours(shift.sign_on_time, now)
        try:
            alert.response = response_code
            alert.responded_at = now

            if transition.status:
                shift.status = transition.status
            if transition.relief_required is not None:
                shift.relief_required = transition.relief_required
            if transition.relief_planned is not None:
                shift.relief_planned = transition.relief_planned
            if transition.completes_shift:
                shift.sign_off_time = now
                shift.duty_hours = round_hours(duty_hours)

            write_duty_log_pair(
                db, shift, transition.log_type, now, duty_hours,
                remarks=remarks or f"{policy.alert_type} response: {response_code}",
                metadata={
                    "alert_type": policy.alert_type,
                    "threshold": policy.hours,
                    "response": response_code,
                },
            )

            if transition.completes_shift:
                set_crew_status(db, shift, 'AVAILABLE')

            db.commit()
        except Exception:
            db.rollback()
            raise

    logger.info(f"Alert response recorded: shift {shift_id} - {policy.alert_type} - {response_code}")
    return shift_store.get_shift(db, shift_id)


def get_alert_history(db: Session, shift_id: int) -> List[dict]:
    shift = shift_store.get_shift(db, shift_id)
    history = []
    for alert in shift.alerts:
        if not alert.sent:
            continue
        policy = get_policy(alert.threshold)
        history.append({
            "threshold": alert.threshold,
            "alert_type": policy.alert_type,
            "sent_at": format_utc_iso(alert.sent_at),
            "response": alert.response,
            "responded_at": format_utc_iso(alert.responded_at),
            "requires_action": policy.requires_action,
        })
    return history
