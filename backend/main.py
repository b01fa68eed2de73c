"""
Duty Hours Monitor - crew duty hour tracking and alerting
"""

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager
import logging

import config
from routers import shifts, staff, monitor, websocket
from database import engine, Base, SessionLocal
from services.alert_dispatch import build_default_sink
from services.duty_hours import SystemClock
from services.errors import DutyHoursError
from services.shift_locks import ShiftLockRegistry
from services.shift_monitor import ShiftMonitor, ThresholdScanner

logging.basicConfig(
    level=config.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


def build_monitor(shift_locks: ShiftLockRegistry, clock) -> ShiftMonitor:
    scanner = ThresholdScanner(
        SessionLocal,
        build_default_sink(config.ALERT_WEBHOOK_URL, timeout=config.DISPATCH_TIMEOUT_SECONDS),
        shift_locks,
        clock=clock,
        dispatch_timeout=config.DISPATCH_TIMEOUT_SECONDS,
    )
    return ShiftMonitor(scanner, interval_seconds=config.MONITORING_INTERVAL_SECONDS)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    logger.info("Duty Hours Monitor starting up...")
    if config.AUTO_CREATE_TABLES:
        Base.metadata.create_all(bind=engine)
    if config.MONITORING_ENABLED:
        app.state.monitor.start()
    else:
        logger.info("Shift monitoring disabled (MONITORING_ENABLED=false)")
    yield
    # Shutdown
    await app.state.monitor.stop()
    logger.info("Duty Hours Monitor shutting down...")


app = FastAPI(
    title="Duty Hours Monitor API",
    description="Crew duty hour tracking and threshold alerts",
    version="1.0.0",
    lifespan=lifespan
)

app.state.shift_locks = ShiftLockRegistry()
app.state.clock = SystemClock()
app.state.monitor = build_monitor(app.state.shift_locks, app.state.clock)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(DutyHoursError)
async def duty_hours_error_handler(request: Request, exc: DutyHoursError):
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


# Routers
app.include_router(shifts.router, prefix="/api/shifts", tags=["Shifts"])
app.include_router(staff.router, prefix="/api/staff", tags=["Staff"])
app.include_router(monitor.router, prefix="/api/monitor", tags=["Monitor"])
app.include_router(websocket.router, tags=["WebSocket"])


@app.get("/")
async def root():
    return {"status": "ok", "service": "Duty Hours Monitor API", "version": "1.0.0"}

@app.get("/health")
async def health():
    return {"status": "healthy", "monitoring": app.state.monitor.is_running}
