# services/config.py
from __future__ import annotations
import os

# ------------------------------------------------------------------------------
# Helper: get env var with fallback
# ------------------------------------------------------------------------------
def _env(name: str, default: str = "") -> str:
    v = os.getenv(name)
    return v if v is not None and v != "" else default

# ------------------------------------------------------------------------------
# Database
# ------------------------------------------------------------------------------
DB_URL: str = _env("AQUABILL_DB_URL", "sqlite://./db.sqlite3")

# ------------------------------------------------------------------------------
# Auth
# ------------------------------------------------------------------------------
SECRET_KEY: str = _env("AQUABILL_SECRET_KEY", "your-secret-key")
REFRESH_SECRET: str = _env("AQUABILL_REFRESH_SECRET", "your-refresh-secret")
ALGORITHM: str = "HS256"
ACCESS_EXPIRE_SECONDS: int = int(_env("AQUABILL_ACCESS_EXPIRE_SECONDS", str(15 * 60)))
REFRESH_EXPIRE_SECONDS: int = int(_env("AQUABILL_REFRESH_EXPIRE_SECONDS", str(7 * 24 * 3600)))

# Bootstrap admin, created on startup when the users table is empty
ADMIN_USERNAME: str = _env("AQUABILL_ADMIN_USERNAME", "admin")
ADMIN_EMAIL: str = _env("AQUABILL_ADMIN_EMAIL", "admin@example.com")
ADMIN_PASSWORD: str = _env("AQUABILL_ADMIN_PASSWORD", "password123")

# ------------------------------------------------------------------------------
# HTTP
# ------------------------------------------------------------------------------
CORS_ORIGINS: list[str] = [
    o.strip()
    for o in _env("AQUABILL_CORS_ORIGINS", "http://localhost:5173,http://127.0.0.1:5173").split(",")
    if o.strip()
]
LOG_LEVEL: str = _env("AQUABILL_LOG_LEVEL", "INFO")

# ------------------------------------------------------------------------------
# Billing
# ------------------------------------------------------------------------------
INVOICE_DUE_DAYS: int = int(_env("AQUABILL_INVOICE_DUE_DAYS", "30"))

# Scheduled backfill of the current period; 0 disables it
BACKFILL_INTERVAL_SECONDS: int = int(_env("AQUABILL_BACKFILL_INTERVAL_SECONDS", "0"))

# Per-subscriber buffer for the event feed
EVENT_QUEUE_SIZE: int = int(_env("AQUABILL_EVENT_QUEUE_SIZE", "100"))
