import logging
from typing import Any, Dict, List, Optional
from datetime import datetime, timezone

from sqlalchemy import insert, select

from creditsuite.core.config import settings
from creditsuite.core.database import audit_logs, get_db_session, get_database_url
from creditsuite.core.logging import get_request_id

logger = logging.getLogger("creditsuite.audit")

_memory_events: List[Dict[str, Any]] = []  # Fallback buffer when DB is unavailable

# Audit modules
MODULE_PLANS = "Planos"
MODULE_PAYMENTS = "Pagamentos"
MODULE_MULTI_AI = "Sistema Multi-IA"
MODULE_USERS = "Usuarios"
MODULE_CREDITS = "Creditos"


def _safe_truncate(value: Any, limit: int = 500):
    if isinstance(value, (int, float, bool)) or value is None:
        return value
    if isinstance(value, (list, tuple)):
        return [_safe_truncate(v, limit) for v in value][:50]
    try:
        text = str(value)
    except Exception:
        return "<unserializable>"
    if len(text) <= limit:
        return text
    return text[:limit] + "...<truncated>"


def record_audit(
    actor_id: Optional[str],
    action: str,
    module: str,
    details: Optional[Dict[str, Any]] = None,
    *,
    level: str = "info",
) -> None:
    """Record an administrative action. Fire-and-forget.

    A failed write is logged and buffered; it never propagates to the caller,
    since the action being audited has already been committed.
    """

    if not settings.AUDIT_ENABLED:
        return

    safe_details = {k: _safe_truncate(v) for k, v in (details or {}).items()}
    request_id = get_request_id()
    if request_id and "request_id" not in safe_details:
        safe_details["request_id"] = request_id

    record = {
        "actor_id": actor_id,
        "action": action,
        "module": module,
        "level": level,
        "details": safe_details,
        "created_at": datetime.now(timezone.utc),
    }

    if not get_database_url():
        _memory_events.append(record)
        logger.debug("Audit event buffered in memory (no DB configured)")
        return

    try:
        with get_db_session() as session:
            session.execute(insert(audit_logs).values(**record))
    except Exception as exc:
        logger.warning(f"Audit event write failed: {exc}", extra={"event_type": action})
        _memory_events.append(record)


def list_audit_entries(*, module: Optional[str] = None, action: Optional[str] = None, limit: int = 100) -> List[Dict[str, Any]]:
    """Most recent audit rows first."""
    stmt = select(audit_logs).order_by(audit_logs.c.id.desc()).limit(limit)
    if module:
        stmt = stmt.where(audit_logs.c.module == module)
    if action:
        stmt = stmt.where(audit_logs.c.action == action)
    with get_db_session() as session:
        rows = session.execute(stmt).fetchall()
    return [
        {
            "id": row.id,
            "actor_id": row.actor_id,
            "action": row.action,
            "module": row.module,
            "level": row.level,
            "details": row.details,
            "created_at": row.created_at,
        }
        for row in rows
    ]


def get_buffered_audit_events():
    return list(_memory_events)


def clear_buffered_audit_events() -> None:
    _memory_events.clear()
