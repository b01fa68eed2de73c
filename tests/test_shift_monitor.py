import asyncio

import pytest

from conftest import RecordingSink, logs_of
from models import DutyLog, ShiftAlert
from services import shift_monitor, shift_service
from services.alert_response import record_alert_response
from services.shift_locks import ShiftLockRegistry
from services.shift_monitor import ShiftMonitor, ThresholdScanner


def sent_levels(db, shift_id):
    db.expire_all()
    return sorted(
        a.threshold for a in db.query(ShiftAlert).filter(
            ShiftAlert.shift_id == shift_id, ShiftAlert.sent == True  # noqa: E712
        )
    )


def test_no_alert_before_seven_hours(db, make_shift, scanner, sink, clock):
    shift = make_shift()
    clock.advance(hours=6, minutes=59)

    report = asyncio.run(scanner.scan())

    assert report.shifts_scanned == 1
    assert sink.payloads == []
    assert sent_levels(db, shift.id) == []


def test_scan_at_eight_oh_five_fires_seven_and_eight(db, make_shift, scanner, sink, clock):
    shift = make_shift()
    clock.advance(hours=8, minutes=5)

    report = asyncio.run(scanner.scan())

    assert sink.sent == [(shift.id, 7), (shift.id, 8)]
    assert [(a.threshold, a.duty_hours) for a in report.alerts_sent] == [(7, 8.08), (8, 8.08)]
    assert sent_levels(db, shift.id) == [7, 8]

    for log_type in ("ALERT_7HR", "ALERT_8HR"):
        rows = logs_of(db, shift.id, log_type)
        assert len(rows) == 2
        assert {r.staff_id for r in rows} == {shift.loco_pilot_id, shift.train_manager_id}
        assert all(r.duty_hours_at_log == pytest.approx(8.08) for r in rows)


def test_catch_up_after_downtime_is_ascending(db, make_shift, scanner, sink, clock):
    shift = make_shift()
    clock.advance(hours=9, minutes=30)

    asyncio.run(scanner.scan())

    assert [t for _, t in sink.sent] == [7, 8, 9]
    alert_logs = [
        r.log_type for r in logs_of(db, shift.id)
        if r.log_type.startswith("ALERT_")
    ]
    assert alert_logs == ["ALERT_7HR"] * 2 + ["ALERT_8HR"] * 2 + ["ALERT_9HR"] * 2


def test_repeat_scans_never_duplicate(db, make_shift, scanner, sink, clock):
    shift = make_shift()
    clock.advance(hours=8, minutes=5)
    asyncio.run(scanner.scan())
    clock.advance(minutes=5)
    asyncio.run(scanner.scan())
    clock.advance(hours=1)
    asyncio.run(scanner.scan())

    assert [t for _, t in sink.sent] == [7, 8, 9]
    for log_type in ("ALERT_7HR", "ALERT_8HR", "ALERT_9HR"):
        assert len(logs_of(db, shift.id, log_type)) == 2


def test_payload_contents(make_shift, scanner, sink, clock):
    shift = make_shift()
    clock.advance(hours=8, minutes=5)
    asyncio.run(scanner.scan())

    payload = sink.payloads[1]
    assert payload["type"] == "duty_alert"
    assert payload["shift_id"] == shift.id
    assert payload["threshold"] == 8
    assert payload["alert_type"] == "8HR"
    assert payload["train_number"] == "12841"
    assert payload["locomotive_no"] == "WAP7-30245"
    assert payload["duty_hours"] == 8.08
    assert payload["sign_on_time"] == "2025-03-01T00:00:00Z"
    assert payload["loco_pilot"]["employee_id"] == "LP001"
    assert payload["train_manager"]["employee_id"] == "TM001"
    assert payload["requires_action"] is True
    assert [o["value"] for o in payload["valid_responses"]] == ["PLAN_RELIEF", "RELIEF_NOT_REQUIRED"]
    assert payload["timestamp"] == "2025-03-01T08:05:00Z"
    assert sink.payloads[0]["requires_action"] is False


def test_dispatch_happens_before_mark_sent_and_audit_log(
    session_factory, make_shift, locks, clock
):
    shift = make_shift()
    observed = []

    def check_state(payload):
        session = session_factory()
        try:
            alert = session.query(ShiftAlert).filter_by(
                shift_id=payload["shift_id"], threshold=payload["threshold"]
            ).one()
            log_count = session.query(DutyLog).filter_by(
                shift_id=payload["shift_id"], log_type=f"ALERT_{payload['alert_type']}"
            ).count()
            observed.append((payload["threshold"], alert.sent, log_count))
        finally:
            session.close()

    sink = RecordingSink(on_dispatch=check_state)
    scanner = ThresholdScanner(session_factory, sink, locks, clock=clock)
    clock.advance(hours=8, minutes=5)
    asyncio.run(scanner.scan())

    assert observed == [(7, False, 0), (8, False, 0)]


def test_dispatch_failure_leaves_alert_unsent_for_next_scan(
    db, session_factory, make_shift, locks, clock
):
    shift = make_shift()
    sink = RecordingSink(fail_thresholds={8})
    scanner = ThresholdScanner(session_factory, sink, locks, clock=clock)
    clock.advance(hours=8, minutes=5)

    report = asyncio.run(scanner.scan())

    assert [(a.shift_id, a.threshold) for a in report.dispatch_failures] == [(shift.id, 8)]
    assert sent_levels(db, shift.id) == [7]
    assert logs_of(db, shift.id, "ALERT_8HR") == []

    sink.fail_thresholds.clear()
    clock.advance(minutes=5)
    asyncio.run(scanner.scan())

    assert sent_levels(db, shift.id) == [7, 8]
    assert len(logs_of(db, shift.id, "ALERT_8HR")) == 2
    assert [t for _, t in sink.sent] == [7, 8, 8]


def test_dispatch_timeout_counts_as_failure(db, session_factory, make_shift, locks, clock):
    shift = make_shift()
    sink = RecordingSink(delay=0.5)
    scanner = ThresholdScanner(session_factory, sink, locks, clock=clock, dispatch_timeout=0.01)
    clock.advance(hours=7, minutes=1)

    report = asyncio.run(scanner.scan())

    assert report.alerts_sent == []
    assert len(report.dispatch_failures) == 1
    assert sent_levels(db, shift.id) == []


def test_storage_failure_in_one_shift_does_not_affect_others(
    db, make_shift, scanner, sink, clock, monkeypatch
):
    broken = make_shift(pilot_id="LP001", manager_id="TM001", train_number="12841")
    healthy = make_shift(pilot_id="LP002", manager_id="TM002", train_number="12842")
    real_write = shift_monitor.write_duty_log_pair

    def failing_write(session, shift, *args, **kwargs):
        if shift.id == broken.id:
            raise RuntimeError("disk full")
        return real_write(session, shift, *args, **kwargs)

    monkeypatch.setattr(shift_monitor, "write_duty_log_pair", failing_write)
    clock.advance(hours=7, minutes=10)

    report = asyncio.run(scanner.scan())

    assert report.failed_shifts == [broken.id]
    assert [(a.shift_id, a.threshold) for a in report.alerts_sent] == [(healthy.id, 7)]
    # Rolled back together with the failed log write
    assert sent_levels(db, broken.id) == []
    assert sent_levels(db, healthy.id) == [7]
    assert len(logs_of(db, healthy.id, "ALERT_7HR")) == 2


def test_closed_shifts_are_not_scanned(db, locks, make_shift, scanner, sink, clock):
    done = make_shift(pilot_id="LP001", manager_id="TM001")
    cancelled = make_shift(pilot_id="LP002", manager_id="TM002")
    asyncio.run(shift_service.complete_shift(db, locks, done.id, clock=clock))
    asyncio.run(shift_service.cancel_shift(db, locks, cancelled.id, clock=clock))
    clock.advance(hours=10)

    report = asyncio.run(scanner.scan())

    assert report.shifts_scanned == 0
    assert sink.payloads == []


def test_relief_planned_shift_is_still_monitored(db, locks, make_shift, scanner, sink, clock):
    shift = make_shift()
    clock.advance(hours=8, minutes=5)
    asyncio.run(scanner.scan())
    asyncio.run(record_alert_response(db, locks, shift.id, 8, "PLAN_RELIEF", clock=clock))

    clock.advance(hours=1)
    asyncio.run(scanner.scan())

    assert [t for _, t in sink.sent] == [7, 8, 9]


def test_overlapping_monitor_runs_are_single_flight(db, make_shift, session_factory, locks, clock):
    shift = make_shift()
    sink = RecordingSink(delay=0.01)
    monitor = ShiftMonitor(ThresholdScanner(session_factory, sink, locks, clock=clock))
    clock.advance(hours=8, minutes=5)

    async def overlap():
        return await asyncio.gather(monitor.run_once(), monitor.run_once())

    first, second = asyncio.run(overlap())

    assert [t for _, t in sink.sent] == [7, 8]
    assert len(first.alerts_sent) + len(second.alerts_sent) == 2
    for log_type in ("ALERT_7HR", "ALERT_8HR"):
        assert len(logs_of(db, shift.id, log_type)) == 2
    assert monitor.last_report is not None


def test_concurrent_scanners_sharing_locks_dispatch_once(db, make_shift, session_factory, locks, clock):
    shift = make_shift()
    sink = RecordingSink(delay=0.01)
    a = ThresholdScanner(session_factory, sink, locks, clock=clock)
    b = ThresholdScanner(session_factory, sink, locks, clock=clock)
    clock.advance(hours=8, minutes=5)

    async def overlap():
        await asyncio.gather(a.scan(), b.scan())

    asyncio.run(overlap())

    assert sorted(t for _, t in sink.sent) == [7, 8]
    for log_type in ("ALERT_7HR", "ALERT_8HR"):
        assert len(logs_of(db, shift.id, log_type)) == 2


def test_conditional_mark_sent_guards_writers_without_shared_locks(
    db, make_shift, session_factory, clock
):
    shift = make_shift()
    sink = RecordingSink(delay=0.01)
    # Separate registries - as if a second process were scanning
    a = ThresholdScanner(session_factory, sink, ShiftLockRegistry(), clock=clock)
    b = ThresholdScanner(session_factory, sink, ShiftLockRegistry(), clock=clock)
    clock.advance(hours=8, minutes=5)

    async def overlap():
        await asyncio.gather(a.scan(), b.scan())

    asyncio.run(overlap())

    assert sent_levels(db, shift.id) == [7, 8]
    for log_type in ("ALERT_7HR", "ALERT_8HR"):
        assert len(logs_of(db, shift.id, log_type)) == 2


def test_monitor_start_and_stop(session_factory, locks, clock):
    sink = RecordingSink()
    monitor = ShiftMonitor(ThresholdScanner(session_factory, sink, locks, clock=clock), interval_seconds=60)

    async def lifecycle():
        monitor.start()
        assert monitor.is_running
        await asyncio.sleep(0.05)
        await monitor.stop()

    asyncio.run(lifecycle())

    assert not monitor.is_running
    # First scan runs immediately at start
    assert monitor.last_report is not None
    assert monitor.last_report.shifts_scanned == 0
