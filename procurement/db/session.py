"""
Database session management with SQLAlchemy.
"""
import threading
from typing import Generator

from sqlalchemy import create_engine, event, inspect, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker, Session
from sqlalchemy.pool import StaticPool

from procurement.core.config import settings
from procurement.core.logging import get_logger

logger = get_logger(__name__)


def _build_engine(url: str) -> Engine:
    if url.startswith("sqlite"):
        # Local development and tests: one shared connection, FK enforcement on,
        # and driver-level transactions disabled so SAVEPOINT works.
        sqlite_engine = create_engine(
            url,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )

        @event.listens_for(sqlite_engine, "connect")
        def _on_connect(dbapi_connection, connection_record):
            dbapi_connection.isolation_level = None
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

        @event.listens_for(sqlite_engine, "begin")
        def _on_begin(conn):
            conn.exec_driver_sql("BEGIN")

        return sqlite_engine

    return create_engine(
        url,
        pool_pre_ping=True,
        pool_size=10,
        max_overflow=20,
        pool_timeout=30,
        pool_recycle=1800,
    )


engine = _build_engine(settings.DATABASE_URL)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def get_db() -> Generator[Session, None, None]:
    """Dependency for getting database session."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


# Award-tracking columns added to a pre-existing ``requests`` table.
REQUEST_AWARD_COLUMNS = (
    ("awarded_supplier_id", "INTEGER"),
    ("awarded_rfx_id", "INTEGER"),
    ("awarded_rfx_response_id", "INTEGER"),
    ("purchase_order_id", "INTEGER"),
    ("purchase_order_number", "TEXT"),
    ("sourcing_status", "TEXT"),
    ("awarded_at", "TIMESTAMPTZ"),
    ("po_issued_at", "TIMESTAMPTZ"),
)

_schema_lock = threading.Lock()
_schema_ready = False


def ensure_schema(bind: Engine = None) -> None:
    """
    Create the sourcing tables if they do not exist yet.

    Runs at most once per process; concurrent callers block on the lock
    and return once the first run has finished.
    """
    global _schema_ready
    if _schema_ready:
        return

    with _schema_lock:
        if _schema_ready:
            return

        bind = bind or engine
        from procurement.db import models  # noqa - register models on Base.metadata

        existing = set(inspect(bind).get_table_names())
        Base.metadata.create_all(bind=bind, checkfirst=True)

        if "requests" in existing and bind.dialect.name == "postgresql":
            with bind.begin() as conn:
                for column, ddl in REQUEST_AWARD_COLUMNS:
                    conn.execute(text(
                        f"ALTER TABLE requests ADD COLUMN IF NOT EXISTS {column} {ddl}"
                    ))

        created = sorted(set(Base.metadata.tables) - existing)
        if created:
            logger.info(f"Schema ensured, created tables: {', '.join(created)}")
        else:
            logger.info("Schema ensured, all tables already present")

        _schema_ready = True


def reset_schema_state() -> None:
    """Forget that the schema was ensured (used when tables are dropped)."""
    global _schema_ready
    with _schema_lock:
        _schema_ready = False


def init_db():
    """
    Startup tasks: connectivity preflight, then the one-shot schema check.

    Deployments that manage the schema with Alembic set
    ENSURE_SCHEMA_ON_STARTUP=false and run `alembic upgrade head` instead.
    """
    from procurement.db.preflight import run_db_preflight

    run_db_preflight(retries=settings.DB_PREFLIGHT_RETRIES)

    if settings.ENSURE_SCHEMA_ON_STARTUP:
        ensure_schema()
    else:
        logger.info("ENSURE_SCHEMA_ON_STARTUP=false: expecting Alembic-managed schema")
