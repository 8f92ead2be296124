"""
Pytest configuration and shared fixtures.
"""

import pytest
from datetime import datetime
from pathlib import Path
from typing import Optional

from jobinfo.database import Job, JobInfo, get_session_factory, init_database
from jobinfo.jobs import ClaimSession

SESSION_A = ClaimSession(b"\x01session-a")
SESSION_B = ClaimSession(b"\x02session-b")


@pytest.fixture
def db_path(tmp_path) -> Path:
    """Create a temporary database with the job tables."""
    db_path = tmp_path / "jobs.db"
    init_database(db_path)
    return db_path


@pytest.fixture
def session_factory(db_path):
    """Session factory bound to the temporary database."""
    factory = get_session_factory(db_path)
    yield factory
    factory.kw["bind"].dispose()


@pytest.fixture
def txn(session_factory):
    """An open session; whatever it has not committed is rolled back."""
    session = session_factory()
    yield session
    session.rollback()
    session.close()


@pytest.fixture
def add_job(session_factory):
    """Return a helper that commits a jobs row with an optional claim."""

    def _add_job(job_id: int, claim: Optional[ClaimSession] = None) -> None:
        with session_factory() as session:
            session.add(Job(id=job_id, claim_session_id=claim.id if claim else None))
            session.commit()

    return _add_job


@pytest.fixture
def add_revision(session_factory):
    """
    Return a helper that commits a raw job_info row with an explicit
    written timestamp, bypassing the delete-then-insert write path.
    """

    def _add_revision(job_id: int, info_key: bytes, value: bytes, written: datetime) -> None:
        with session_factory() as session:
            session.add(JobInfo(job_id=job_id, info_key=info_key, value=value, written=written))
            session.commit()

    return _add_revision


def count_revisions(session_factory, job_id: int, info_key: bytes) -> int:
    with session_factory() as session:
        return session.query(JobInfo).filter_by(job_id=job_id, info_key=info_key).count()
