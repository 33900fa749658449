"""
Persistence layer for creditsuite.

One MetaData holds the four tables the service owns: versioned config blobs,
user accounts with their credit balance, the append-only credit ledger and the
admin audit trail. Engine and session helpers live alongside so features only
import from here.
"""
import logging
import os
import threading
from contextlib import contextmanager, nullcontext
from typing import Generator, Optional

from sqlalchemy import create_engine, MetaData, Table, Column, Integer, String, DateTime, JSON, Text, Index, CheckConstraint, select
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import QueuePool, StaticPool
from sqlalchemy.sql import func

from creditsuite.core.config import settings

logger = logging.getLogger("creditsuite")

metadata = MetaData()

# Pool sizing for server databases; sqlite always gets a single static connection
POOL_OPTIONS = {
    "pool_size": 10,
    "max_overflow": 20,
    "pool_timeout": 30,
    "pool_recycle": 3600,
}

_engine: Optional[Engine] = None
_session_factory: Optional[sessionmaker] = None

# sqlite shares one StaticPool connection, so units of work must not overlap across threads
_sqlite_guard = threading.RLock()


def get_database_url() -> Optional[str]:
    """TEST_DATABASE_URL wins over DATABASE_URL so pytest never touches a real DB."""
    return os.getenv("TEST_DATABASE_URL") or settings.DATABASE_URL


def _build_engine(url: str) -> Engine:
    if url.startswith("sqlite"):
        return create_engine(url, poolclass=StaticPool, connect_args={"check_same_thread": False})
    return create_engine(url, poolclass=QueuePool, **POOL_OPTIONS)


def init_engine(database_url: Optional[str] = None) -> Engine:
    global _engine, _session_factory

    url = database_url or get_database_url()
    if not url:
        raise ValueError("DATABASE_URL is not configured (set it in the environment or .env)")

    _engine = _build_engine(url)
    _session_factory = sessionmaker(bind=_engine, autocommit=False, autoflush=False)
    logger.debug("Database engine initialised", extra={"dialect": _engine.dialect.name})
    return _engine


def get_engine() -> Engine:
    if _engine is None:
        return init_engine()
    return _engine


def _session_guard():
    return _sqlite_guard if get_engine().dialect.name == "sqlite" else nullcontext()


def _sessions() -> sessionmaker:
    if _session_factory is None:
        init_engine()
    return _session_factory


def dispose_engine() -> None:
    """Forget the current engine; the next call re-reads the database URL."""
    global _engine, _session_factory
    if _engine is not None:
        _engine.dispose()
    _engine = None
    _session_factory = None


@contextmanager
def get_db_session():
    """Unit of work: commit when the block exits cleanly, roll back on any error."""
    with _session_guard():
        session = _sessions()()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()


def get_db() -> Generator[Session, None, None]:
    session = _sessions()()
    try:
        yield session
    finally:
        session.close()


def create_all_tables() -> None:
    metadata.create_all(bind=get_engine())


def reset_database() -> None:
    """Drop and recreate every table. Tests and local development only."""
    engine = get_engine()
    metadata.drop_all(bind=engine)
    metadata.create_all(bind=engine)


def check_connection() -> bool:
    try:
        with get_engine().connect() as conn:
            conn.execute(select(1))
    except Exception as exc:
        logger.warning("Database connection check failed: %s", exc)
        return False
    return True


# Versioned JSON blobs keyed by name (plan catalog, payment settings, AI settings)
system_config = Table(
    'system_config',
    metadata,
    Column('key', String(100), primary_key=True),
    Column('value', JSON, nullable=True),
    Column('version', Integer, nullable=False, server_default='0'),
    Column('updated_by', String(100), nullable=True),
    Column('updated_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
)

# User accounts; credits == -1 means unlimited
users = Table(
    'app_users',
    metadata,
    Column('user_id', String(100), primary_key=True),
    Column('email', String(320), nullable=True, index=True),
    Column('full_name', Text, nullable=True),
    Column('role', String(50), nullable=False, server_default='user'),
    Column('status', String(50), nullable=False, server_default='active'),
    Column('plan_id', String(50), nullable=False, server_default='free'),
    Column('credits', Integer, nullable=False, server_default='0'),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    Column('updated_at', DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False),
    CheckConstraint('credits >= -1', name='ck_app_users_credits_floor'),
    Index('idx_users_created_at', 'created_at'),
    Index('idx_users_plan_id', 'plan_id'),
)

# Append-only credit ledger
credit_ledger = Table(
    'credit_ledger',
    metadata,
    Column('id', Integer, primary_key=True, autoincrement=True),
    Column('user_id', String(100), nullable=False, index=True),
    Column('event_type', String(20), nullable=False),  # SPEND | GRANT
    Column('service_key', String(100), nullable=True),
    Column('amount', Integer, nullable=False),
    Column('balance_after', Integer, nullable=False),
    Column('request_id', String(100), nullable=True),
    Column('metadata', JSON, nullable=True),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    Index('idx_credit_ledger_user_created', 'user_id', 'created_at'),
)

# Administrative audit trail
audit_logs = Table(
    'audit_logs',
    metadata,
    Column('id', Integer, primary_key=True, autoincrement=True),
    Column('actor_id', String(100), nullable=True, index=True),
    Column('action', String(100), nullable=False),
    Column('module', String(100), nullable=False),
    Column('level', String(20), nullable=False, server_default='info'),
    Column('details', JSON, nullable=True),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False, index=True),
    Index('idx_audit_logs_action', 'action'),
    Index('idx_audit_logs_module', 'module'),
)
