from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from typing import Generator

from sqlalchemy import create_engine, inspect as sa_inspect, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from hopedeeds.config import get_settings
from hopedeeds.models import Base

log = logging.getLogger(__name__)

_lock = threading.Lock()
_engine: Engine | None = None
_SessionLocal = None


def init_db(database_url: str | None = None) -> Engine:
    """Create the process-wide engine (and its connection pool).

    Calling it again disposes the previous engine first.
    """
    global _engine, _SessionLocal
    with _lock:
        if _engine is not None:
            _engine.dispose()
        url = database_url or get_settings().resolved_database_url
        connect_args = {"check_same_thread": False} if url.startswith("sqlite") else {}
        _engine = create_engine(url, connect_args=connect_args)
        Base.metadata.create_all(_engine)
        _SessionLocal = sessionmaker(bind=_engine, autoflush=False, expire_on_commit=False)
        _migrate_existing_db(_engine)
        log.info("Database ready at %s", _engine.url.render_as_string(hide_password=True))
        return _engine


def close_db() -> None:
    """Dispose the engine's connection pool. Safe to call when not initialized."""
    global _engine, _SessionLocal
    with _lock:
        if _engine is not None:
            _engine.dispose()
        _engine = None
        _SessionLocal = None


def _migrate_existing_db(engine) -> None:
    """Add columns that may be missing in older databases."""
    inspector = sa_inspect(engine)
    if not inspector.has_table("opportunities"):
        return
    columns = {col["name"] for col in inspector.get_columns("opportunities")}
    missing = {
        "parent_id": "INTEGER",
        "frequency_type": "VARCHAR(20)",
        "recurrence_rule_json": "TEXT",
        "recur_until": "DATE",
    }
    for name, ddl_type in missing.items():
        if name not in columns:
            with engine.begin() as conn:
                conn.execute(text(f"ALTER TABLE opportunities ADD COLUMN {name} {ddl_type}"))


def get_session() -> Session:
    with _lock:
        if _SessionLocal is None:
            raise RuntimeError("init_db() has not been called")
        factory = _SessionLocal
    return factory()  # type: ignore[misc]


def session_generator() -> Generator[Session, None, None]:
    """Yield one session, rolled back if the caller raises, closed afterwards.

    The API's ``db_session`` dependency delegates to it; ``session_scope``
    wraps it for the CLI::

        with session_scope() as session:
            ...
    """
    session = get_session()
    try:
        yield session
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


session_scope = contextmanager(session_generator)
