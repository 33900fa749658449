"""
creditsuite/features/config_store/service.py

Versioned key/value store for JSON configuration blobs.

Each key (plan catalog, payment settings, AI platform settings) holds one JSON
document plus a version counter. Writers may pass the version they read; a
mismatch means someone saved in between and the write is refused instead of
silently overwriting their change.
"""

import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Optional, Protocol

from sqlalchemy import insert, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from creditsuite.core.database import get_db_session, system_config
from creditsuite.core.errors import ConfigUnavailableError, ConflictError

logger = logging.getLogger("creditsuite.config_store")


@dataclass(frozen=True)
class ConfigRecord:
    key: str
    value: Any
    version: int
    updated_by: Optional[str] = None
    updated_at: Optional[datetime] = None


class ConfigStore(Protocol):
    def get(self, key: str) -> Optional[ConfigRecord]:
        """Return the stored record, or None when the key was never written."""
        ...

    def put(self, key: str, value: Any, actor: Optional[str], expected_version: Optional[int] = None) -> int:
        """Replace the value and return the new version."""
        ...


def _decode(key: str, raw: Any) -> Any:
    if isinstance(raw, (bytes, str)):
        try:
            return json.loads(raw)
        except ValueError as exc:
            raise ConfigUnavailableError(f"Stored config '{key}' is not valid JSON") from exc
    return raw


class SqlConfigStore:
    """ConfigStore backed by the system_config table."""

    def get(self, key: str) -> Optional[ConfigRecord]:
        try:
            with get_db_session() as session:
                row = session.execute(
                    select(system_config).where(system_config.c.key == key)
                ).first()
        except SQLAlchemyError as exc:
            logger.warning("config_store.read_failed", extra={"event_type": key, "error_code": type(exc).__name__})
            raise ConfigUnavailableError(f"Config store unavailable while reading '{key}'") from exc

        if row is None:
            return None
        return ConfigRecord(
            key=row.key,
            value=_decode(key, row.value),
            version=row.version,
            updated_by=row.updated_by,
            updated_at=row.updated_at,
        )

    def put(self, key: str, value: Any, actor: Optional[str], expected_version: Optional[int] = None) -> int:
        now = datetime.now(timezone.utc)
        try:
            with get_db_session() as session:
                current = session.execute(
                    select(system_config.c.version).where(system_config.c.key == key)
                ).scalar_one_or_none()

                if expected_version is not None and (current or 0) != expected_version:
                    raise ConflictError(
                        f"Config '{key}' changed since version {expected_version} (now {current or 0})",
                        code="version_conflict",
                    )

                if current is None:
                    new_version = 1
                    session.execute(
                        insert(system_config).values(
                            key=key,
                            value=value,
                            version=new_version,
                            updated_by=actor,
                            updated_at=now,
                        )
                    )
                else:
                    new_version = current + 1
                    result = session.execute(
                        update(system_config)
                        .where(system_config.c.key == key)
                        .where(system_config.c.version == current)
                        .values(value=value, version=new_version, updated_by=actor, updated_at=now)
                    )
                    if result.rowcount != 1:
                        raise ConflictError(f"Config '{key}' was modified concurrently", code="version_conflict")
        except IntegrityError as exc:
            # Two first-time writers raced on the insert
            raise ConflictError(f"Config '{key}' was modified concurrently", code="version_conflict") from exc
        except SQLAlchemyError as exc:
            logger.error("config_store.write_failed", extra={"event_type": key, "error_code": type(exc).__name__})
            raise ConfigUnavailableError(f"Config store unavailable while saving '{key}'") from exc

        logger.info("config_store.saved", extra={"event_type": key, "user_id": actor})
        return new_version


_default_store: Optional[ConfigStore] = None


def get_config_store() -> ConfigStore:
    global _default_store
    if _default_store is None:
        _default_store = SqlConfigStore()
    return _default_store


def set_config_store(store: Optional[ConfigStore]) -> None:
    """Swap the process-wide store (None restores the SQL-backed default)."""
    global _default_store
    _default_store = store
