"""Database engine & session management.

One engine per process, thread-local scoped sessions, one transaction per
``app_session()`` block. File databases run in WAL mode so the stats
recomputer's read snapshot never blocks user writes; ``:memory:`` shares a
single connection so worker threads see the same data.
"""
from __future__ import annotations

import os, threading
try:  # POSIX file locking for multi-worker hosts
    import fcntl  # type: ignore
except ImportError:  # pragma: no cover - non-POSIX
    fcntl = None  # type: ignore
from contextlib import contextmanager, nullcontext
from typing import Iterator, Optional

from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import sessionmaker, scoped_session, Session as SASession
from sqlalchemy.pool import StaticPool

from olbridge.utils.logging import get_logger
from olbridge.db.models import Base
from olbridge import config as app_config

MEMORY = ":memory:"

_engine: Optional[Engine] = None
_scoped: Optional[scoped_session] = None
_LOCK = threading.Lock()

LOG = get_logger("olbridge.db")

# Columns added after the first schema release: (table, column, DDL type).
_ADDED_COLUMNS = (
    ("books", "page_count", "INTEGER"),
    ("books", "publisher", "VARCHAR(255)"),
    ("books", "subjects", "TEXT"),
    ("notification_preferences", "review_comment", "BOOLEAN NOT NULL DEFAULT 1"),
)


def _build_engine(db_path: str) -> Engine:
    if db_path == MEMORY:
        return create_engine(
            "sqlite://",
            future=True,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    engine = create_engine(
        f"sqlite:///{db_path}",
        future=True,
        connect_args={"check_same_thread": False, "timeout": 15},
    )

    @event.listens_for(engine, "connect")
    def _sqlite_pragmas(dbapi_conn, _record):  # pragma: no cover - driver hook
        cur = dbapi_conn.cursor()
        cur.execute("PRAGMA journal_mode=WAL")
        cur.execute("PRAGMA busy_timeout=15000")
        cur.close()

    return engine


@contextmanager
def _schema_lock(db_path: str):
    """Serialize DDL across host processes sharing one database file."""
    parent_dir = os.path.dirname(os.path.abspath(db_path)) or "."
    with open(os.path.join(parent_dir, ".olbridge_schema.lock"), "w") as lf:
        fcntl.flock(lf, fcntl.LOCK_EX)
        try:
            yield
        finally:
            fcntl.flock(lf, fcntl.LOCK_UN)


def init_engine_once(db_path: Optional[str] = None) -> None:
    global _engine, _scoped
    if _engine is not None:
        return
    with _LOCK:
        if _engine is not None:
            return
        db_path = db_path or app_config.get_db_path()
        LOG.info("Initializing catalog database engine at %s", db_path)
        on_disk = db_path != MEMORY
        if on_disk:
            parent_dir = os.path.dirname(os.path.abspath(db_path)) or "."
            os.makedirs(parent_dir, exist_ok=True)
            if not os.access(parent_dir, os.W_OK):
                raise RuntimeError(f"catalog DB directory not writable: {parent_dir}")
        engine = _build_engine(db_path)
        with _schema_lock(db_path) if on_disk and fcntl is not None else nullcontext():
            _create_schema(engine)
        _engine = engine
        _scoped = scoped_session(sessionmaker(bind=engine, expire_on_commit=False, class_=SASession))
        LOG.debug("catalog schema ready")


def _apply_column_migrations(conn) -> None:
    for table, column, ddl in _ADDED_COLUMNS:
        exists = conn.execute(
            text("SELECT name FROM sqlite_master WHERE type='table' AND name=:name"),
            {"name": table},
        ).fetchone()
        if not exists:
            continue
        col_names = {row[1] for row in conn.execute(text(f"PRAGMA table_info('{table}')")).fetchall()}
        if column not in col_names:
            LOG.info("Applying schema migration: adding %s.%s column", table, column)
            conn.execute(text(f"ALTER TABLE {table} ADD COLUMN {column} {ddl}"))


def _create_schema(engine: Engine) -> None:
    """Add missing columns to existing tables, then create missing tables.

    Hosts without ``fcntl`` can still race between the existence check and
    the DDL; only the resulting "already exists" errors are tolerated.
    """
    try:
        with engine.begin() as conn:
            _apply_column_migrations(conn)
        Base.metadata.create_all(engine)
    except OperationalError as e:  # pragma: no cover - concurrency edge
        msg = str(e).lower()
        if "already exists" in msg or "duplicate column" in msg:
            LOG.warning("Schema create encountered existing objects (benign race)")
        else:
            raise


def get_scoped_session() -> scoped_session:
    if _scoped is None:
        init_engine_once()
    if _scoped is None:
        raise RuntimeError("Scoped session could not be initialized.")
    return _scoped


@contextmanager
def app_session() -> Iterator[SASession]:
    scoped = get_scoped_session()
    sess = scoped()
    try:
        yield sess
        sess.commit()
    except Exception:
        sess.rollback()
        raise
    finally:
        sess.close()
        scoped.remove()


def reset_for_tests(drop: bool = False) -> None:
    global _engine, _scoped
    with _LOCK:
        if _engine is not None and drop:
            try:
                Base.metadata.drop_all(_engine)
            except OperationalError:
                LOG.warning("Failed dropping tables during reset", exc_info=True)
        if _scoped is not None:
            _scoped.remove()
        if _engine is not None:
            _engine.dispose()
        _engine = None
        _scoped = None


__all__ = [
    "init_engine_once",
    "get_scoped_session",
    "app_session",
    "reset_for_tests",
]
