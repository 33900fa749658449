"""
Health and diagnostics endpoints.

Lightweight probes for operational monitoring; no secrets are exposed.
"""

import logging
import time

from fastapi import APIRouter
from fastapi.responses import JSONResponse
from sqlalchemy import inspect

from creditsuite.core.database import get_engine
from creditsuite.core.logging import latency_bucket_ms

logger = logging.getLogger("creditsuite")

root_router = APIRouter(tags=["health"])

REQUIRED_TABLES = ["system_config", "app_users", "credit_ledger", "audit_logs"]


@root_router.get("/healthz")
def healthz():
    """Lightweight liveness check (no deps)."""
    return {"status": "ok"}


@root_router.get("/readyz")
def readyz():
    """Readiness check: DB connectivity + required tables."""
    start = time.perf_counter()
    try:
        engine = get_engine()
        with engine.connect() as conn:
            conn.exec_driver_sql("SELECT 1")

        inspector = inspect(engine)
        missing = [t for t in REQUIRED_TABLES if not inspector.has_table(t)]
    except Exception as e:
        logger.error(f"[readyz] readiness check failed: {e}")
        return JSONResponse(status_code=503, content={"status": "error", "detail": "database unreachable"})

    if missing:
        detail = f"missing tables: {', '.join(missing)}"
        logger.warning(f"[readyz] {detail}")
        return JSONResponse(status_code=503, content={"status": "error", "detail": detail})

    bucket = latency_bucket_ms((time.perf_counter() - start) * 1000)
    return {"status": "ok", "latency_bucket": bucket}
