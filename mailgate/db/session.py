"""Engine and session factory management."""

import logging
from contextlib import contextmanager
from typing import Generator, Optional

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from mailgate.core.config import get_settings
from mailgate.db.base import Base

logger = logging.getLogger(__name__)


def make_engine(database_url: str, echo: bool = False) -> Engine:
    """Create an engine; SQLite connections may be shared with worker threads."""
    connect_args = {}
    if database_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
    engine = create_engine(
        database_url,
        echo=echo,
        pool_pre_ping=True,
        connect_args=connect_args,
    )
    if engine.dialect.name == "sqlite":
        _configure_sqlite(engine)
    return engine


def _configure_sqlite(engine: Engine) -> None:
    """Serialize SQLite writers so conditional updates report the loser cleanly.

    pysqlite's own transaction handling is switched off and every transaction
    starts with BEGIN IMMEDIATE; a second writer then waits on the busy
    timeout instead of failing with a lock-upgrade deadlock.
    """

    @event.listens_for(engine, "connect")
    def set_sqlite_pragma(dbapi_conn, connection_record):
        dbapi_conn.isolation_level = None
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.execute("PRAGMA busy_timeout=30000")  # 30 seconds
        cursor.close()

    @event.listens_for(engine, "begin")
    def begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def make_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


def init_db(engine: Engine) -> None:
    """Create all tables (development and tests; production uses Alembic)."""
    # Import models so they register on Base.metadata
    from mailgate.db import models  # noqa: F401
    from mailgate.db.models.audit import register_immutability_listeners

    register_immutability_listeners()
    Base.metadata.create_all(engine)


@contextmanager
def session_scope(factory: sessionmaker) -> Generator[Session, None, None]:
    """Transactional scope: commit on success, roll back on any error."""
    session = factory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


_engine: Optional[Engine] = None
_factory: Optional[sessionmaker] = None


def get_session_factory() -> sessionmaker:
    """Process-wide session factory built from settings on first use."""
    global _engine, _factory
    if _factory is None:
        settings = get_settings()
        _engine = make_engine(settings.database_url)
        _factory = make_session_factory(_engine)
        logger.info("Database engine initialised for %s", _engine.url.render_as_string(hide_password=True))
    return _factory


def SessionLocal() -> Session:
    return get_session_factory()()
