"""
Runtime configuration for the Duty Hours Monitor.

Everything comes from environment variables so the same build runs under
uvicorn in production and under pytest with an in-memory database.

Threshold levels and the alert response table are NOT configuration -
see services/thresholds.py.
"""

import os


def _env_bool(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in ('true', '1', 'yes')


# Database
DATABASE_URL = os.environ.get("DATABASE_URL", "postgresql:///duty_hours_db")
AUTO_CREATE_TABLES = _env_bool("AUTO_CREATE_TABLES", True)

# Shift monitoring job
MONITORING_ENABLED = _env_bool("MONITORING_ENABLED", True)
MONITORING_INTERVAL_SECONDS = int(os.environ.get("MONITORING_INTERVAL_SECONDS", "300"))  # 5 minutes

# Alert dispatch
DISPATCH_TIMEOUT_SECONDS = float(os.environ.get("DISPATCH_TIMEOUT_SECONDS", "10"))
ALERT_WEBHOOK_URL = os.environ.get("ALERT_WEBHOOK_URL") or None

# HTTP
CORS_ORIGINS = [
    origin.strip()
    for origin in os.environ.get(
        "CORS_ORIGINS", "http://localhost:5173,http://localhost:3000"
    ).split(",")
    if origin.strip()
]

LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()
