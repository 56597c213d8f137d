"""GenerationJob entity - one requested generation step for one product."""

from datetime import datetime
from enum import Enum
from typing import Optional
from uuid import UUID, uuid4

from sqlalchemy import JSON, Column, DateTime, Text
from sqlmodel import Field, SQLModel

from mockforge.core.timezone import utcnow
from mockforge.models.attempt import Attempt


class JobType(str, Enum):
    """Generation step kind."""

    IMAGE = "image"
    BACKGROUND_REMOVAL = "background_removal"
    MOCKUP = "mockup"
    UPSCALE = "upscale"


class JobStatus(str, Enum):
    """Job lifecycle status."""

    QUEUED = "queued"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


TERMINAL_STATUSES = frozenset({JobStatus.SUCCEEDED, JobStatus.FAILED})


class InvalidStateTransition(Exception):
    """Raised when attempting an invalid job state transition."""

    pass


class GenerationJob(SQLModel, table=True):
    """GenerationJob tracks one generation step through to a terminal outcome.

    Rows are never deleted by the orchestrator, only status-transitioned, so the
    table doubles as an audit log of every generation request.
    """

    __tablename__ = "generation_jobs"  # type: ignore[assignment]

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    product_id: UUID = Field(foreign_key="products.id", index=True)
    type: JobType = Field(index=True)
    status: JobStatus = Field(default=JobStatus.QUEUED, index=True)
    input: dict = Field(default_factory=dict, sa_column=Column(JSON, nullable=False))
    # Backend attempt handles, serialized Attempt dicts. Empty while queued.
    attempts: list = Field(default_factory=list, sa_column=Column(JSON, nullable=False))
    output: Optional[dict] = Field(default=None, sa_column=Column(JSON))
    error: Optional[str] = Field(default=None, sa_column=Column(Text))
    created_at: datetime = Field(
        default_factory=utcnow,
        sa_column=Column(DateTime(timezone=True), nullable=False, index=True),
    )
    updated_at: datetime = Field(
        default_factory=utcnow, sa_column=Column(DateTime(timezone=True), nullable=False)
    )

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def get_attempts(self) -> list[Attempt]:
        return [Attempt.model_validate(a) for a in self.attempts or []]

    def set_attempts(self, attempts: list[Attempt]) -> None:
        # Reassign so SQLAlchemy sees the JSON column as dirty
        self.attempts = [a.model_dump(mode="json") for a in attempts]
        self.touch()

    def merge_input(self, partial: dict) -> None:
        self.input = {**(self.input or {}), **partial}
        self.touch()

    def touch(self) -> None:
        self.updated_at = utcnow()

    def mark_running(self) -> None:
        """Transition from queued to running.

        Raises:
            InvalidStateTransition: If current status is not queued
        """
        if self.status != JobStatus.QUEUED:
            raise InvalidStateTransition(
                f"Cannot mark running from {self.status.value}. Job must be in queued state."
            )
        self.status = JobStatus.RUNNING
        self.touch()

    def mark_succeeded(self, output: dict) -> None:
        """Transition from running to succeeded.

        Args:
            output: Structured result, at minimum the published asset URLs

        Raises:
            InvalidStateTransition: If current status is not running
        """
        if self.status != JobStatus.RUNNING:
            raise InvalidStateTransition(
                f"Cannot mark succeeded from {self.status.value}. Job must be in running state."
            )
        self.output = output
        self.error = None
        self.status = JobStatus.SUCCEEDED
        self.touch()

    def mark_failed(self, error: str) -> None:
        """Transition from any non-terminal state to failed.

        Raises:
            InvalidStateTransition: If current status is already terminal
        """
        if self.is_terminal:
            raise InvalidStateTransition(f"Cannot mark failed from terminal state {self.status.value}.")
        self.error = error
        self.status = JobStatus.FAILED
        self.touch()
