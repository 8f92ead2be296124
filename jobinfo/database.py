"""
Database schema and connection management.

Uses SQLAlchemy over SQLite (or any SQLAlchemy URL) for the jobs and
job_info tables.
"""

from datetime import datetime
from pathlib import Path
from typing import Callable, Optional, TypeVar, Union

from sqlalchemy import (
    Column,
    DateTime,
    ForeignKey,
    Integer,
    LargeBinary,
    create_engine,
    event,
    func,
)
from sqlalchemy.engine import Engine
from sqlalchemy.exc import DBAPIError
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from .env import get_txn_retries
from .logger import get_logger
from .retry import exponential_backoff, is_transient_error

Base = declarative_base()

logger = get_logger()

T = TypeVar("T")

DatabaseTarget = Union[Path, str]


class Job(Base):
    """A job as seen by the info store: its ID and current claim."""

    __tablename__ = "jobs"

    id = Column(Integer, primary_key=True, autoincrement=False)
    claim_session_id = Column(LargeBinary, nullable=True)  # NULL when unclaimed
    created_at = Column(DateTime, nullable=False, default=datetime.now)


class JobInfo(Base):
    """
    One revision of an info record.

    The primary key doubles as the (job_id, info_key, written) index that
    prefix iteration depends on for its ordering.
    """

    __tablename__ = "job_info"

    job_id = Column(Integer, ForeignKey("jobs.id"), primary_key=True)
    info_key = Column(LargeBinary, primary_key=True)
    written = Column(DateTime, primary_key=True, server_default=func.now())
    value = Column(LargeBinary, nullable=True)


def _database_url(target: DatabaseTarget) -> str:
    if isinstance(target, Path):
        return f"sqlite:///{target}"
    return target


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record):
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def get_engine(target: DatabaseTarget) -> Engine:
    """
    Create an engine for a SQLite file path or a SQLAlchemy URL.

    Args:
        target: Path to SQLite database file, or database URL

    Returns:
        SQLAlchemy engine
    """
    engine = create_engine(_database_url(target))
    if engine.dialect.name == "sqlite":
        event.listen(engine, "connect", _enable_sqlite_foreign_keys)
    return engine


def init_database(target: DatabaseTarget) -> None:
    """
    Initialize database and create tables.

    Args:
        target: Path to SQLite database file, or database URL
    """
    if isinstance(target, Path):
        target.parent.mkdir(parents=True, exist_ok=True)
    engine = get_engine(target)
    Base.metadata.create_all(engine)
    engine.dispose()


def get_session_factory(target: DatabaseTarget) -> sessionmaker:
    return sessionmaker(bind=get_engine(target))


def get_session(target: DatabaseTarget) -> Session:
    """
    Get database session.

    Args:
        target: Path to SQLite database file, or database URL

    Returns:
        SQLAlchemy session
    """
    return get_session_factory(target)()


def run_in_txn(
    session_factory: Callable[[], Session],
    fn: Callable[[Session], T],
    max_retries: Optional[int] = None,
    base_delay: float = 0.05,
) -> T:
    """
    Run fn(session) inside a transaction, committing on success.

    Any exception rolls the transaction back. Transient failures
    (serialization conflicts, locked database) rerun fn from scratch in a
    fresh transaction, so fn must not keep state across attempts.

    Args:
        session_factory: Callable returning a new Session
        fn: Work to run; receives the session with an open transaction
        max_retries: Retries for transient failures (default: JOBINFO_TXN_RETRIES)
        base_delay: Initial backoff delay in seconds

    Returns:
        Whatever fn returns

    Raises:
        RetryError: If transient failures outlast max_retries
    """
    if max_retries is None:
        max_retries = get_txn_retries()

    def on_retry(attempt, exc, delay):
        logger.warning(
            "Retrying transaction after transient failure",
            attempt=attempt,
            delay=delay,
            error=str(exc),
        )

    @exponential_backoff(
        max_retries=max_retries,
        base_delay=base_delay,
        max_delay=2.0,
        exceptions=(DBAPIError,),
        on_retry=on_retry,
        should_retry=is_transient_error,
    )
    def attempt():
        with session_factory() as session:
            with session.begin():
                return fn(session)

    return attempt()
