"""
Job info storage.

Reads and writes rows of the job_info table on behalf of one job. Every
operation runs inside the transaction the caller supplies; atomicity of the
delete-then-insert write and consistency of read-then-iterate sequences come
from that transaction, not from anything done here.

Rows form an append log keyed by (job_id, info_key, written). A write removes
all older revisions of its key before inserting the new one, so readers never
have to break ties between revisions that share a timestamp.
"""

from typing import TYPE_CHECKING, Callable, Optional, Tuple, Union

from sqlalchemy import delete, func, insert, select
from sqlalchemy.orm import Session

from .database import Job, JobInfo
from .errors import (
    ClaimMismatchError,
    InfoStorageAssertionError,
    MissingClaimRowError,
    NoTransactionError,
)
from .logger import get_logger

if TYPE_CHECKING:
    from .jobs import JobHandle

logger = get_logger()

BytesLike = Union[bytes, bytearray, memoryview, str]
InfoVisitor = Callable[[bytes, bytes], None]

LEGACY_PAYLOAD_KEY = b"legacy_payload"
LEGACY_PROGRESS_KEY = b"legacy_progress"


def get_legacy_payload_key() -> bytes:
    """Return the info_key holding the job's legacy payload."""
    return LEGACY_PAYLOAD_KEY


def get_legacy_progress_key() -> bytes:
    """Return the info_key holding the job's legacy progress."""
    return LEGACY_PROGRESS_KEY


def _as_bytes(value: BytesLike, what: str) -> bytes:
    if isinstance(value, bytes):
        return value
    if isinstance(value, (bytearray, memoryview)):
        return bytes(value)
    if isinstance(value, str):
        return value.encode("utf-8")
    raise TypeError(f"{what} must be bytes or str, not {type(value).__name__}")


def prefix_end(prefix: bytes) -> Optional[bytes]:
    """
    Return the smallest key greater than every key starting with prefix.

    Trailing 0xff bytes cannot be incremented and are dropped first. Returns
    None when no such key exists (empty or all-0xff prefix), meaning the
    range has no upper bound.
    """
    trimmed = prefix.rstrip(b"\xff")
    if not trimmed:
        return None
    return trimmed[:-1] + bytes([trimmed[-1] + 1])


class InfoStorage:
    """
    Read and write access to job_info rows for a single job.

    All operations are scoped to the txn and run on behalf of the job.
    Obtain one with JobHandle.info_storage(txn).
    """

    def __init__(self, job: "JobHandle", txn: Optional[Session]):
        self.job = job
        self.txn = txn

    def _check_claim_session(self) -> bool:
        """
        Verify the job's stored claim still matches our session.

        Returns False when the job row records no claim at all, in which case
        nothing was checked and the write may proceed.
        """
        job_id = self.job.job_id
        session_id = self.job.session.id

        row = self.txn.execute(
            select(Job.claim_session_id).where(Job.id == job_id)
        ).first()

        if row is None:
            logger.record_claim_check(matched=False)
            raise MissingClaimRowError(job_id, session_id)

        stored = row[0]
        if stored is None:
            logger.debug("Job has no recorded claim session", job_id=job_id, session=session_id)
            return False
        if not isinstance(stored, bytes):
            raise InfoStorageAssertionError(
                f"job info: expected claim_session_id to be bytes (was {type(stored).__name__})"
            )

        if stored != session_id:
            logger.record_claim_check(matched=False)
            logger.warning(
                "Claim session mismatch",
                job_id=job_id,
                expected=session_id,
                found=stored,
            )
            raise ClaimMismatchError(job_id, session_id, stored)

        logger.record_claim_check(matched=True)
        return True

    def get(self, info_key: BytesLike) -> Tuple[Optional[bytes], bool]:
        """
        Fetch the latest info record for the job and info_key.

        Returns:
            (value, True) if a record exists, (None, False) otherwise
        """
        if self.txn is None:
            raise NoTransactionError("cannot access the job info table without an associated txn")
        info_key = _as_bytes(info_key, "info_key")

        row = self.txn.execute(
            select(JobInfo.value)
            .where(JobInfo.job_id == self.job.job_id, JobInfo.info_key == info_key)
            .order_by(JobInfo.written.desc())
            .limit(1)
        ).first()
        logger.record_info_read()

        if row is None:
            return None, False

        value = row[0]
        if not isinstance(value, bytes):
            raise InfoStorageAssertionError(
                f"job info: expected value to be bytes (was {type(value).__name__})"
            )
        return value, True

    def write(self, info_key: BytesLike, value: BytesLike) -> None:
        """
        Replace the info record for the job and info_key with value.

        Older revisions are deleted and the new row inserted in the same
        transaction. If the job handle carries a session and the job row
        records a claim, the two must match.

        Raises:
            NoTransactionError: If the storage has no txn
            ClaimMismatchError: If another session has claimed the job
        """
        if self.txn is None:
            raise NoTransactionError("cannot write to the job info table without an associated txn")
        info_key = _as_bytes(info_key, "info_key")
        value = _as_bytes(value, "value")

        job_id = self.job.job_id

        claimed = False
        if self.job.session is not None:
            claimed = self._check_claim_session()
        else:
            logger.debug("Writing job info with no session ID", job_id=job_id, info_key=info_key)

        # First clear out any older revisions of this info.
        self.txn.execute(
            delete(JobInfo)
            .where(JobInfo.job_id == job_id, JobInfo.info_key == info_key)
            .execution_options(synchronize_session=False)
        )

        # Write the new info, using the same transaction.
        self.txn.execute(
            insert(JobInfo).values(
                job_id=job_id,
                info_key=info_key,
                written=func.now(),
                value=value,
            )
        )
        logger.record_info_write(claimed=claimed)

    def iterate(self, info_prefix: BytesLike, visit: InfoVisitor) -> None:
        """
        Call visit(info_key, value) for the latest record of each key under
        info_prefix, in ascending key order.

        An exception from visit stops the iteration and propagates.
        """
        if self.txn is None:
            raise NoTransactionError("cannot iterate over the job info table without an associated txn")
        info_prefix = _as_bytes(info_prefix, "info_prefix")

        conditions = [JobInfo.job_id == self.job.job_id, JobInfo.info_key >= info_prefix]
        end = prefix_end(info_prefix)
        if end is not None:
            conditions.append(JobInfo.info_key < end)

        # Newest revision of each key must come first for the dedup below.
        rows = self.txn.execute(
            select(JobInfo.info_key, JobInfo.value)
            .where(*conditions)
            .order_by(JobInfo.info_key.asc(), JobInfo.written.desc())
        )

        visited = 0
        prev_key = None
        try:
            for row in rows:
                info_key = row[0]
                if not isinstance(info_key, bytes):
                    raise InfoStorageAssertionError(
                        f"job info: expected info_key to be bytes (was {type(info_key).__name__})"
                    )

                if info_key == prev_key:
                    continue
                if prev_key is not None and info_key < prev_key:
                    raise InfoStorageAssertionError(
                        f"job info: rows out of order, {info_key!r} after {prev_key!r}"
                    )
                prev_key = info_key

                value = row[1]
                if not isinstance(value, bytes):
                    raise InfoStorageAssertionError(
                        f"job info: expected value to be bytes (was {type(value).__name__})"
                    )
                visit(info_key, value)
                visited += 1
        finally:
            rows.close()
            logger.record_iteration(visited)

    def get_legacy_payload(self) -> Tuple[Optional[bytes], bool]:
        """Return the job's legacy payload from the job_info table."""
        return self.get(LEGACY_PAYLOAD_KEY)

    def write_legacy_payload(self, payload: BytesLike) -> None:
        """Write the job's legacy payload to the job_info table."""
        self.write(LEGACY_PAYLOAD_KEY, payload)

    def get_legacy_progress(self) -> Tuple[Optional[bytes], bool]:
        """Return the job's legacy progress from the job_info table."""
        return self.get(LEGACY_PROGRESS_KEY)

    def write_legacy_progress(self, progress: BytesLike) -> None:
        """Write the job's legacy progress to the job_info table."""
        self.write(LEGACY_PROGRESS_KEY, progress)
