"""GenerationJob repository - the job store client.

Thin typed accessor over the generation_jobs table. No retry or dependency
logic lives here; state transitions are delegated to the model methods.
"""

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from mockforge.models.attempt import Attempt
from mockforge.models.job import GenerationJob, InvalidStateTransition, JobStatus, JobType


class GenerationJobRepository:
    """Repository for GenerationJob entities.

    Every write is scoped to a single job's primary key.
    """

    def __init__(self, session: AsyncSession):
        """Initialize repository with database session.

        Args:
            session: SQLAlchemy async session for database operations
        """
        self.session = session

    async def add(self, job: GenerationJob) -> GenerationJob:
        """Persist a new job (normally created in queued state by a caller)."""
        self.session.add(job)
        await self.session.flush()
        return job

    async def get_by_id(self, job_id: UUID) -> GenerationJob | None:
        result = await self.session.execute(
            select(GenerationJob).where(GenerationJob.id == job_id)  # type: ignore[arg-type]
        )
        return result.scalar_one_or_none()

    async def get_for_update(self, job_id: UUID) -> GenerationJob | None:
        """Retrieve a job with a row lock, skipping it if another worker holds it.

        Uses FOR UPDATE SKIP LOCKED so two worker processes never mutate the
        same job concurrently. Returns None when the row is locked or missing.
        """
        result = await self.session.execute(
            select(GenerationJob)
            .where(GenerationJob.id == job_id)  # type: ignore[arg-type]
            .with_for_update(skip_locked=True)
        )
        return result.scalar_one_or_none()

    async def list_by_status(self, status: JobStatus, limit: int | None = None) -> list[GenerationJob]:
        """Retrieve jobs in a given status, oldest first (FIFO).

        Args:
            status: Status to filter on
            limit: Optional maximum number of jobs

        Returns:
            Jobs ordered by creation time
        """
        query = (
            select(GenerationJob)
            .where(GenerationJob.status == status)  # type: ignore[arg-type]
            .order_by(GenerationJob.created_at.asc())  # type: ignore[attr-defined]
        )
        if limit is not None:
            query = query.limit(limit)
        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def get_latest_for_product(
        self, product_id: UUID, job_type: JobType
    ) -> GenerationJob | None:
        """Most recent job of a type for a product (the current generation cycle)."""
        result = await self.session.execute(
            select(GenerationJob)
            .where(GenerationJob.product_id == product_id)  # type: ignore[arg-type]
            .where(GenerationJob.type == job_type)  # type: ignore[arg-type]
            .order_by(GenerationJob.created_at.desc())  # type: ignore[attr-defined]
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def list_by_product(self, product_id: UUID) -> list[GenerationJob]:
        result = await self.session.execute(
            select(GenerationJob)
            .where(GenerationJob.product_id == product_id)  # type: ignore[arg-type]
            .order_by(GenerationJob.created_at.asc())  # type: ignore[attr-defined]
        )
        return list(result.scalars().all())

    async def insert_attempts(self, job: GenerationJob, attempts: list[Attempt]) -> None:
        """Replace the job's attempt list (dispatch results or polled updates)."""
        job.set_attempts(attempts)
        self.session.add(job)
        await self.session.flush()

    async def update_status(
        self,
        job: GenerationJob,
        status: JobStatus,
        output: dict | None = None,
        error: str | None = None,
    ) -> None:
        """Transition a job through the model's state machine.

        Raises:
            InvalidStateTransition: For transitions the state machine forbids
        """
        if status == JobStatus.RUNNING:
            job.mark_running()
        elif status == JobStatus.SUCCEEDED:
            job.mark_succeeded(output or {})
        elif status == JobStatus.FAILED:
            job.mark_failed(error or "Unknown error")
        else:
            raise InvalidStateTransition(f"Jobs cannot be moved back to {status.value}")
        self.session.add(job)
        await self.session.flush()

    async def append_input(self, job: GenerationJob, partial_input: dict) -> None:
        """Attach resolved references (e.g. garment image URL) to the job input."""
        job.merge_input(partial_input)
        self.session.add(job)
        await self.session.flush()
