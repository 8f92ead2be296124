"""
Exception types raised by the job info store.

Backing-store failures (SQLAlchemy exceptions) are never wrapped; only the
conditions the store itself detects get a type here.
"""

from typing import Optional


class JobInfoError(Exception):
    """Base class for job info store errors."""
    pass


class NoTransactionError(JobInfoError):
    """Raised when an operation is attempted without an associated txn."""
    pass


class ClaimMismatchError(JobInfoError):
    """
    Raised when the writing session no longer owns the job.

    Callers should treat this as a signal to abandon work on the job rather
    than as a transient I/O failure.
    """

    def __init__(self, job_id: int, expected: bytes, found: Optional[bytes], message: str = ""):
        self.job_id = job_id
        self.expected = expected
        self.found = found
        if not message:
            message = f"expected session {expected!r} but found {found!r}"
        super().__init__(message)


class MissingClaimRowError(ClaimMismatchError):
    """Raised when the claim check finds no jobs row for the job ID."""

    def __init__(self, job_id: int, expected: bytes):
        super().__init__(
            job_id,
            expected,
            None,
            message=f"expected session {expected!r} for job ID {job_id} but found none",
        )


class InfoStorageAssertionError(JobInfoError):
    """Internal invariant violation: unexpected column type or row order."""
    pass
