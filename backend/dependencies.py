"""
FastAPI dependencies for process-wide objects kept on app.state
(set up in main.py, replaced in tests).
"""

from fastapi import Request

from services.duty_hours import SystemClock
from services.shift_locks import ShiftLockRegistry
from services.shift_monitor import ShiftMonitor


def get_shift_locks(request: Request) -> ShiftLockRegistry:
    return request.app.state.shift_locks


def get_clock(request: Request):
    return getattr(request.app.state, "clock", None) or SystemClock()


def get_monitor(request: Request) -> ShiftMonitor:
    return request.app.state.monitor
