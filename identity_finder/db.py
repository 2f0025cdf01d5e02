"""Database engine bootstrap and session helper.

The engine is created once by the application lifespan and handed to the
repository; nothing here keeps process-wide connection state.
"""
import logging
import os
from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import event
from sqlalchemy.engine import Engine
from sqlmodel import SQLModel, Session, create_engine

from . import models  # noqa: F401  (registers tables on SQLModel.metadata)

logger = logging.getLogger(__name__)


def _is_sqlite(database_url: str) -> bool:
    return database_url.startswith("sqlite")


def _set_sqlite_pragmas(dbapi_connection, connection_record):
    cursor = dbapi_connection.cursor()
    try:
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.execute("PRAGMA synchronous=NORMAL")
    finally:
        cursor.close()


def init_db(database_url: str = "sqlite:////data/identity_finder.db") -> Engine:
    """Create and return SQLAlchemy engine. Creates all tables on startup."""
    connect_args = {}
    if _is_sqlite(database_url):
        connect_args = {"check_same_thread": False}
        if database_url.startswith("sqlite:///") and database_url != "sqlite:///:memory:":
            file_path = database_url[len("sqlite:///"):]
            dirpath = os.path.dirname(file_path)
            if dirpath and not os.path.exists(dirpath):
                os.makedirs(dirpath, exist_ok=True)

    engine = create_engine(database_url, echo=False, pool_pre_ping=True, connect_args=connect_args)

    if _is_sqlite(database_url) and ":memory:" not in database_url:
        event.listen(engine, "connect", _set_sqlite_pragmas)

    SQLModel.metadata.create_all(engine)
    logger.info("Database ready (%s)", engine.url.render_as_string(hide_password=True))
    return engine


@contextmanager
def session_scope(engine: Engine) -> Iterator[Session]:
    """Yield a short-lived SQLModel `Session` bound to `engine`.

    Caller commits. Uncommitted work is rolled back when the block raises;
    the session is always closed on exit.
    """
    sess = Session(engine)
    logger.debug("Opening DB session %s", sess)
    try:
        yield sess
    except Exception:
        sess.rollback()
        raise
    finally:
        sess.close()
        logger.debug("Closed DB session %s", sess)
