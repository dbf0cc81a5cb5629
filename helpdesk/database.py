"""Engine, sessions and schema creation.

`make_engine(url)` is the single place engines are built, so the app and the
test suite get the same SQLite tuning:
- `check_same_thread=False` (uvicorn worker threads share the pool);
- a busy timeout, so concurrent ticket creations wait for the writer instead
  of failing straight away;
- `PRAGMA foreign_keys=ON`, so comment/attachment/history rows cascade with
  their ticket as they do on server databases.

`DATABASE_URL` defaults to `helpdesk.db` in the project root.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Generator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker

logger = logging.getLogger(__name__)

PROJECT_ROOT = Path(__file__).resolve().parents[1]

DATABASE_URL: str = os.getenv("DATABASE_URL", f"sqlite:///{(PROJECT_ROOT / 'helpdesk.db').as_posix()}")
SQLITE_BUSY_TIMEOUT = float(os.getenv("SQLITE_BUSY_TIMEOUT", "15"))


def make_engine(url: str) -> Engine:
    if not url.startswith("sqlite"):
        return create_engine(url, pool_pre_ping=True)

    sqlite_engine = create_engine(url, connect_args={"check_same_thread": False, "timeout": SQLITE_BUSY_TIMEOUT})

    @event.listens_for(sqlite_engine, "connect")
    def _sqlite_pragmas(dbapi_connection, connection_record) -> None:
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    return sqlite_engine


def make_session_factory(bind: Engine) -> sessionmaker:
    # Objects stay readable after commit; background notifications use plain dicts anyway
    return sessionmaker(bind=bind, autoflush=False, autocommit=False, expire_on_commit=False, class_=Session)


engine = make_engine(DATABASE_URL)
SessionLocal = make_session_factory(engine)

Base = declarative_base()


def get_db() -> Generator[Session, None, None]:
    """FastAPI dependency: one session per request, always closed."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db() -> None:
    """Create missing tables on the module-level `engine`."""
    # Registers every model on Base.metadata
    import helpdesk.models  # noqa: F401

    logger.info("Creating database tables (if not exists) on %s", engine.url.render_as_string(hide_password=True))
    try:
        Base.metadata.create_all(bind=engine)
    except Exception:
        logger.exception("Failed to initialize database")
        raise


__all__ = ["Base", "engine", "SessionLocal", "make_engine", "make_session_factory", "get_db", "init_db"]
