"""Engine creation and transaction scopes for the meowpad database."""
import logging
import sqlite3
from contextlib import contextmanager
from typing import Any, Iterator, Optional

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from meowpad.config import config
from meowpad.exceptions import (
    AlreadyTaggedError,
    DuplicateRelationError,
    DuplicateTitleError,
    DuplicateUrlError,
    InvalidTagTargetError,
    NotFoundError,
    StorageError,
)

logger = logging.getLogger(__name__)


def create_db_engine(url: Optional[str] = None) -> Engine:
    """Create an engine with hardened SQLite settings.

    - WAL journal so outside readers never see a half-written transaction
    - NORMAL synchronous mode (good balance of safety vs speed)
    - Foreign keys enforced, so deletes cascade
    - pysqlite's implicit transaction handling disabled and BEGIN emitted
      explicitly, which makes DDL transactional and enables SAVEPOINT
    """
    engine = create_engine(url or config.get_db_url(), pool_pre_ping=True)

    @event.listens_for(engine, "connect")
    def set_sqlite_pragma(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.execute("PRAGMA synchronous=NORMAL")
        cursor.execute("PRAGMA busy_timeout=5000")
        cursor.close()

    @event.listens_for(engine, "begin")
    def do_begin(conn):
        conn.exec_driver_sql("BEGIN")

    return engine


class Database:
    """Owns the engine and the single transaction scope of an invocation.

    ``transaction()`` calls nest: an inner call joins the outer transaction,
    so several store operations compose into one atomic unit. The outermost
    scope commits on success and rolls back on *any* exception, including
    ``KeyboardInterrupt``.

    Args:
        url: SQLAlchemy database URL. Defaults to the configured database path.
        engine: Pre-configured engine; takes precedence over ``url``.
    """

    def __init__(self, url: Optional[str] = None, engine: Optional[Engine] = None):
        self.engine = engine if engine is not None else create_db_engine(url)
        self.session_factory = sessionmaker(bind=self.engine, expire_on_commit=False)
        self._active: Optional[Session] = None

    @property
    def in_transaction(self) -> bool:
        return self._active is not None

    @contextmanager
    def transaction(self) -> Iterator[Session]:
        """Open (or join) the read-write transaction."""
        if self._active is not None:
            yield self._active
            return

        session = self.session_factory()
        self._active = session
        try:
            yield session
            session.commit()
        except BaseException:
            session.rollback()
            raise
        finally:
            self._active = None
            session.close()

    @contextmanager
    def read_session(self) -> Iterator[Session]:
        """Session for read-only work.

        Joins the active transaction when there is one so pending writes are
        visible; otherwise opens a private session that never commits. Lazy
        query generators use this so abandoning them can never roll back a
        caller's writes.
        """
        if self._active is not None:
            yield self._active
            return

        session = self.session_factory()
        try:
            yield session
        finally:
            session.close()

    @contextmanager
    def savepoint(self) -> Iterator[Session]:
        """Nested transaction inside the active one.

        A failure inside rolls back to the savepoint only; the enclosing
        transaction stays usable.
        """
        with self.transaction() as session:
            with session.begin_nested():
                yield session

    def dispose(self) -> None:
        """Release all pooled connections."""
        self.engine.dispose()


def translate_integrity_error(error: IntegrityError, **context: Any) -> Exception:
    """Map a constraint violation onto the matching typed error.

    Args:
        error: The IntegrityError raised by the driver.
        **context: Values naming the offending entity (url, title,
            tag_name, target, primary_id, related_id, missing_id).

    Returns:
        The exception to raise in place of ``error``.
    """
    message = str(getattr(error, "orig", error))
    if "link.url" in message:
        return DuplicateUrlError(context.get("url", "?"))
    if "note.title" in message:
        return DuplicateTitleError(context.get("title", "?"))
    if "item_tag" in message and "exactly one" in message:
        return InvalidTagTargetError(
            link_id=context.get("link_id"), note_id=context.get("note_id")
        )
    if "item_tag" in message:
        return AlreadyTaggedError(context.get("tag_name", "?"), context.get("target", "?"))
    if "related_link" in message:
        return DuplicateRelationError(
            context.get("primary_id", "?"), context.get("related_id", "?")
        )
    if "FOREIGN KEY" in message:
        return NotFoundError(context.get("missing_id", "?"))
    return StorageError(
        "Constraint violation", operation=context.get("operation"), original_error=error
    )


def is_fts_query_error(error: Exception) -> bool:
    """True when a driver error comes from a malformed FTS5 MATCH expression."""
    orig = getattr(error, "orig", error)
    if not isinstance(orig, sqlite3.OperationalError):
        return False
    message = str(orig).lower()
    return "fts5" in message or "syntax error" in message or "no such column" in message
