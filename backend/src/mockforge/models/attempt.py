"""Attempt value model - one backend's execution of a generation job."""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class AttemptMode(str, Enum):
    """How a backend delivers its result."""

    SYNCHRONOUS = "synchronous"
    ASYNCHRONOUS = "asynchronous"


class AttemptStatus(str, Enum):
    """Attempt-local status."""

    PENDING = "pending"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class Attempt(BaseModel):
    """One backend invocation inside a (possibly fanned-out) job.

    Attempts are stored as JSON inside ``GenerationJob.attempts``. They are
    created by the generation adapter at dispatch time and only mutated by the
    reconciler while polling.
    """

    backend_id: str
    mode: AttemptMode
    external_handle: Optional[str] = None
    status: AttemptStatus = AttemptStatus.PENDING
    result_ref: Optional[str] = None
    error: Optional[str] = None
    metadata: dict = Field(default_factory=dict)

    @property
    def is_outstanding(self) -> bool:
        """Asynchronous attempt still waiting on the backend."""
        return self.mode == AttemptMode.ASYNCHRONOUS and self.status == AttemptStatus.PENDING

    def succeeded(self, result_ref: str) -> "Attempt":
        return self.model_copy(
            update={"status": AttemptStatus.SUCCEEDED, "result_ref": result_ref, "error": None}
        )

    def failed(self, reason: str) -> "Attempt":
        return self.model_copy(update={"status": AttemptStatus.FAILED, "error": reason})
