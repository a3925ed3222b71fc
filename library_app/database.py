from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from library_app.config import get_settings
from library_app.exceptions import StorageError
from library_app.logging_config import get_logger


logger = get_logger("database")


def create_db_engine(database_url: str, timeout: float = 30.0) -> Engine:
    """
    Build an engine for the given URL.

    For SQLite the connection is shared across threads, writers wait up to
    ``timeout`` seconds for the file lock, and foreign keys are switched on
    for every new connection (SQLite leaves them off by default).
    """
    is_sqlite = database_url.startswith("sqlite")
    db_engine = create_engine(
        database_url,
        connect_args=(
            {"check_same_thread": False, "timeout": timeout} if is_sqlite else {}
        ),
    )

    if is_sqlite:

        @event.listens_for(db_engine, "connect")
        def _enable_foreign_keys(dbapi_connection, connection_record):
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

    return db_engine


settings = get_settings()
engine = create_db_engine(settings.database_url, settings.database_timeout)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()


def get_db():
    """
    Dependency function that provides a database session.

    The session is closed after the request whether or not the handler
    raised. Commits are the job of ``transaction()``.
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def storage_errors(db: Session) -> Iterator[Session]:
    """
    Re-raise SQLAlchemy errors from the wrapped block as StorageError.

    The session is rolled back first so it stays usable afterwards.
    """
    try:
        yield db
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception("Storage failure, session rolled back")
        raise StorageError(f"Storage operation failed: {exc.__class__.__name__}") from exc


@contextmanager
def transaction(db: Session) -> Iterator[Session]:
    """
    Run a unit of work that commits as a whole or not at all.

    Any exception rolls the session back. SQLAlchemy errors, including a
    failed commit, are re-raised as StorageError; application errors
    propagate unchanged.
    """
    with storage_errors(db):
        try:
            yield db
            db.commit()
        except Exception:
            db.rollback()
            raise
