"""
Shift store - the queries the monitor and response handler depend on.

    get_shift()          point lookup (crew, locomotive and alerts loaded)
    list_open_shifts()   every monitorable shift
    mark_alert_sent()    conditional check-and-set of one alert flag
"""

import logging
from datetime import datetime
from typing import List

from sqlalchemy import select, update
from sqlalchemy.orm import Session, selectinload

from models import Shift, ShiftAlert, OPEN_SHIFT_STATUSES
from services.errors import ShiftNotFoundError

logger = logging.getLogger(__name__)


def _shift_query():
    return select(Shift).options(
        selectinload(Shift.loco_pilot),
        selectinload(Shift.train_manager),
        selectinload(Shift.alerts),
    )


def get_shift(db: Session, shift_id: int) -> Shift:
    """Load a shift fresh from the database (bypasses stale identity-map state)."""
    shift = db.execute(
        _shift_query()
        .where(Shift.id == shift_id)
        .execution_options(populate_existing=True)
    ).scalars().first()
    if not shift:
        raise ShiftNotFoundError(shift_id)
    return shift


def list_open_shifts(db: Session) -> List[Shift]:
    """Shifts with an open status and no sign-off, oldest sign-on first."""
    return list(db.execute(
        _shift_query()
        .where(
            Shift.status.in_(OPEN_SHIFT_STATUSES),
            Shift.sign_off_time.is_(None),
        )
        .order_by(Shift.sign_on_time, Shift.id)
    ).scalars().all())


def mark_alert_sent(db: Session, shift_id: int, threshold: int, sent_at: datetime) -> bool:
    """
    Set alert sent=true for one threshold, only if it is still unsent and the
    shift is still open. Returns False when another writer got there first
    or the shift has been closed. Does not commit.
    """
    still_open = (
        select(Shift.id)
        .where(
            Shift.id == shift_id,
            Shift.status.in_(OPEN_SHIFT_STATUSES),
            Shift.sign_off_time.is_(None),
        )
        .scalar_subquery()
    )
    result = db.execute(
        update(ShiftAlert)
        .where(
            ShiftAlert.shift_id == still_open,
            ShiftAlert.threshold == threshold,
            ShiftAlert.sent == False,  # noqa: E712
        )
        .values(sent=True, sent_at=sent_at)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1
