"""
Job handles.

A JobHandle is the caller's in-memory view of a job: its ID and, when a worker
has claimed it, the claiming session. Sessions are issued elsewhere; here they
are only compared.
"""

from dataclasses import dataclass
from typing import Optional

from sqlalchemy.orm import Session

from .info_storage import InfoStorage


@dataclass(frozen=True)
class ClaimSession:
    """Opaque identity of the worker session that owns a job."""

    id: bytes

    def __post_init__(self):
        if isinstance(self.id, (bytearray, memoryview)):
            object.__setattr__(self, "id", bytes(self.id))
        elif not isinstance(self.id, bytes):
            raise TypeError(f"session id must be bytes, not {type(self.id).__name__}")

    @classmethod
    def from_hex(cls, value: str) -> "ClaimSession":
        return cls(bytes.fromhex(value))

    def __str__(self) -> str:
        return self.id.hex()


@dataclass
class JobHandle:
    """A job's (job_id, session) view; builds InfoStorage handles scoped to a txn."""

    job_id: int
    session: Optional[ClaimSession] = None

    def info_storage(self, txn: Optional[Session]) -> InfoStorage:
        """Return an InfoStorage scoped to this job and the given txn."""
        return InfoStorage(self, txn)
