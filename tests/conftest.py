import asyncio
import os
from datetime import datetime, timezone

# Must be set before config/database are imported
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["MONITORING_ENABLED"] = "false"
os.environ["AUTO_CREATE_TABLES"] = "false"

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from database import Base
from models import DutyLog
from schemas_shifts import CrewMember, ShiftCreate
from services import shift_service
from services.alert_dispatch import DispatchSink
from services.duty_hours import FixedClock
from services.shift_locks import ShiftLockRegistry
from services.shift_monitor import ThresholdScanner

SIGN_ON = datetime(2025, 3, 1, 0, 0, tzinfo=timezone.utc)


class RecordingSink(DispatchSink):
    """
    Records every payload. `fail_thresholds` makes those levels fail;
    `on_dispatch(payload)` runs before the result is returned; `delay`
    yields to the event loop so concurrent scans interleave.
    """
    name = "recording"

    def __init__(self, fail_thresholds=(), on_dispatch=None, delay=0.0):
        self.payloads = []
        self.fail_thresholds = set(fail_thresholds)
        self.on_dispatch = on_dispatch
        self.delay = delay

    async def dispatch(self, payload):
        await asyncio.sleep(self.delay)
        self.payloads.append(payload)
        if self.on_dispatch:
            self.on_dispatch(payload)
        return payload["threshold"] not in self.fail_thresholds

    @property
    def sent(self):
        return [(p["shift_id"], p["threshold"]) for p in self.payloads]


@pytest.fixture
def session_factory(tmp_path):
    # File-backed so every session gets its own connection
    engine = create_engine(
        f"sqlite:///{tmp_path / 'duty_hours.db'}",
        connect_args={"check_same_thread": False},
    )
    Base.metadata.create_all(bind=engine)
    factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    yield factory
    engine.dispose()


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def clock():
    return FixedClock(SIGN_ON)


@pytest.fixture
def locks():
    return ShiftLockRegistry()


@pytest.fixture
def sink():
    return RecordingSink()


@pytest.fixture
def scanner(session_factory, sink, locks, clock):
    return ThresholdScanner(session_factory, sink, locks, clock=clock, dispatch_timeout=1.0)


def shift_request(
    pilot_id="LP001",
    manager_id="TM001",
    train_number="12841",
    sign_on_time=SIGN_ON,
    duty_type="SP",
    **extra,
) -> ShiftCreate:
    return ShiftCreate(
        train_number=train_number,
        train_name="Coromandel Express",
        locomotive_no="WAP7-30245",
        loco_pilot=CrewMember(employee_id=pilot_id, name=f"Pilot {pilot_id}", phone="9800000001"),
        train_manager=CrewMember(employee_id=manager_id, name=f"Manager {manager_id}", phone="9800000002"),
        sign_on_time=sign_on_time,
        sign_on_station="HWH",
        section="HWH-KGP",
        duty_type=duty_type,
        **extra,
    )


@pytest.fixture
def make_shift(db):
    def _make(**kwargs):
        return shift_service.create_shift(db, shift_request(**kwargs))
    return _make


def logs_of(db, shift_id, log_type=None):
    query = db.query(DutyLog).filter(DutyLog.shift_id == shift_id)
    if log_type:
        query = query.filter(DutyLog.log_type == log_type)
    return query.order_by(DutyLog.id).all()
