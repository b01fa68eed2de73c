"""
Monitor router - manual scan trigger and status
"""

from fastapi import APIRouter, Depends

from dependencies import get_monitor
from services.shift_monitor import ShiftMonitor

router = APIRouter()


@router.post("/run")
async def run_scan_once(monitor: ShiftMonitor = Depends(get_monitor)):
    """Run one threshold scan now (waits for an in-flight scan first)"""
    report = await monitor.run_once()
    return report.to_dict()


@router.get("/status")
async def monitor_status(monitor: ShiftMonitor = Depends(get_monitor)):
    return {
        "running": monitor.is_running,
        "scanning": monitor.is_scanning,
        "interval_seconds": monitor.interval_seconds,
        "last_report": monitor.last_report.to_dict() if monitor.last_report else None,
    }
