"""
Shift Monitor - recurring duty hour threshold scan

Runs as a background asyncio task started from main.py lifespan:
    1. First scan immediately at startup, then every MONITORING_INTERVAL_SECONDS
    2. Load every open shift (SCHEDULED / IN_PROGRESS / RELIEF_PLANNED, no sign-off)
    3. Per shift, under that shift's lock:
         compute duty hours -> find newly crossed thresholds (ascending)
         for each: dispatch -> mark sent -> duty log pair, in that order
    4. Collect a ScanReport

Ordering per threshold is fixed:
    - never mark sent without a dispatch attempt that succeeded
      (otherwise the alert is silently lost)
    - the duty log pair is only written once the mark-sent update won
      (otherwise the audit trail could show an alert twice)

Failures are per shift: a dispatch failure leaves that threshold unsent for
the next tick; a storage error rolls back and skips the rest of that shift.
Other shifts in the same run are unaffected.

Scans are single-flight: ShiftMonitor holds a lock around each scan, the
loop awaits a scan before sleeping, and a manual run waits for an in-flight
one to finish.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, List, Optional

from sqlalchemy.orm import Session

from services import shift_store
from services.alert_dispatch import DispatchSink, build_alert_payload, dispatch_with_timeout
from services.duty_hours import SystemClock, calculate_duty_hours, round_hours
from services.duty_log import write_duty_log_pair
from services.errors import ShiftNotFoundError
from services.shift_locks import ShiftLockRegistry
from services.thresholds import newly_crossed
from shift_helpers import format_utc_iso

logger = logging.getLogger(__name__)


@dataclass
class SentAlert:
    shift_id: int
    threshold: int
    duty_hours: float


@dataclass
class ScanReport:
    started_at: datetime
    finished_at: Optional[datetime] = None
    shifts_scanned: int = 0
    alerts_sent: List[SentAlert] = field(default_factory=list)
    dispatch_failures: List[SentAlert] = field(default_factory=list)
    failed_shifts: List[int] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "started_at": format_utc_iso(self.started_at),
            "finished_at": format_utc_iso(self.finished_at),
            "shifts_scanned": self.shifts_scanned,
            "alerts_sent": [
                {"shift_id": a.shift_id, "threshold": a.threshold, "duty_hours": a.duty_hours}
                for a in self.alerts_sent
            ],
            "dispatch_failures": [
                {"shift_id": a.shift_id, "threshold": a.threshold, "duty_hours": a.duty_hours}
                for a in self.dispatch_failures
            ],
            "failed_shifts": list(self.failed_shifts),
        }


class ThresholdScanner:
    """One pass over all open shifts. Holds no state between scans."""

    def __init__(
        self,
        session_factory: Callable[[], Session],
        sink: DispatchSink,
        locks: ShiftLockRegistry,
        clock=None,
        dispatch_timeout: float = 10.0,
    ):
        self.session_factory = session_factory
        self.sink = sink
        self.locks = locks
        self.clock = clock or SystemClock()
        self.dispatch_timeout = dispatch_timeout

    async def scan(self) -> ScanReport:
        report = ScanReport(started_at=self.clock.now())
        db = self.session_factory()
        try:
            shift_ids = [shift.id for shift in shift_store.list_open_shifts(db)]
            if not shift_ids:
                logger.info("No active shifts to monitor")
                return report

            logger.info(f"Monitoring {len(shift_ids)} active shifts")
            for shift_id in shift_ids:
                try:
                    await self._scan_shift(db, shift_id, report)
                except Exception as e:
                    db.rollback()
                    report.failed_shifts.append(shift_id)
                    logger.error(f"Error monitoring shift {shift_id}: {e}", exc_info=True)
        finally:
            db.close()
            report.finished_at = self.clock.now()
        return report

    async def _scan_shift(self, db: Session, shift_id: int, report: ScanReport):
        async with self.locks.hold(shift_id):
            try:
                shift = shift_store.get_shift(db, shift_id)
            except ShiftNotFoundError:
                logger.debug(f"Shift {shift_id} deleted during scan - skipping")
                return
            if not shift.is_open:
                return

            report.shifts_scanned += 1
            now = self.clock.now()
            duty_hours = calculate_duty_hours(shift.sign_on_time, now)

            for policy in newly_crossed(duty_hours, shift.sent_thresholds()):
                outcome = SentAlert(shift.id, policy.hours, round_hours(duty_hours))

                payload = build_alert_payload(shift, policy, duty_hours, now)
                if not await dispatch_with_timeout(self.sink, payload, self.dispatch_timeout):
                    report.dispatch_failures.append(outcome)
                    logger.warning(
                        f"{policy.alert_type} alert for shift {shift.id} not delivered - "
                        f"will retry next scan"
                    )
                    continue

                if not shift_store.mark_alert_sent(db, shift.id, policy.hours, now):
                    db.rollback()
                    logger.warning(
                        f"{policy.alert_type} alert for shift {shift.id} changed by another writer "
                        f"- stopping scan of this shift"
                    )
                    break

                write_duty_log_pair(
                    db, shift, policy.log_type, now, duty_hours,
                    remarks=f"{policy.alert_type} duty hour alert triggered",
                    metadata={
                        "train_number": shift.train_number,
                        "alert_type": policy.alert_type,
                        "threshold": policy.hours,
                    },
                )
                db.commit()
                report.alerts_sent.append(outcome)
                logger.info(
                    f"Alert sent: {policy.alert_type} for shift {shift.id} "
                    f"(Train: {shift.train_number}, Duty: {outcome.duty_hours}h)"
                )


class ShiftMonitor:
    """
    Recurring, single-flight wrapper around ThresholdScanner.

    start() schedules the loop on the running event loop; stop() cancels it.
    run_once() is the manual trigger and waits for any in-flight scan.
    """

    def __init__(self, scanner: ThresholdScanner, interval_seconds: float = 300):
        self.scanner = scanner
        self.interval_seconds = interval_seconds
        self.last_report: Optional[ScanReport] = None
        self._scan_lock = asyncio.Lock()
        self._task: Optional[asyncio.Task] = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def is_scanning(self) -> bool:
        return self._scan_lock.locked()

    async def run_once(self) -> ScanReport:
        async with self._scan_lock:
            report = await self.scanner.scan()
            self.last_report = report
        if report.alerts_sent or report.dispatch_failures or report.failed_shifts:
            logger.info(
                f"Shift monitoring completed: {report.shifts_scanned} scanned, "
                f"{len(report.alerts_sent)} alerts sent, "
                f"{len(report.dispatch_failures)} dispatch failures, "
                f"{len(report.failed_shifts)} failed shifts"
            )
        return report

    async def _loop(self):
        while True:
            try:
                await self.run_once()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Error in shift monitoring job: {e}", exc_info=True)
            await asyncio.sleep(self.interval_seconds)

    def start(self) -> asyncio.Task:
        if self.is_running:
            return self._task
        logger.info(f"Starting shift monitoring (every {self.interval_seconds / 60:g} minutes)")
        self._task = asyncio.create_task(self._loop())
        return self._task

    async def stop(self):
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("Shift monitoring stopped")
