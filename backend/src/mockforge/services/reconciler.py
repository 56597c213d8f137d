"""Fan-out/fan-in reconciliation of a job's attempts.

Polls outstanding asynchronous attempts, publishes each succeeded attempt
exactly once and reduces the attempts to the job's aggregate status.
"""

import asyncio
from dataclasses import dataclass

import structlog

from mockforge.models.asset import AssetRole
from mockforge.models.attempt import Attempt, AttemptStatus
from mockforge.models.job import GenerationJob, JobStatus, JobType
from mockforge.services.exceptions import AllBackendsFailed, PublicationError
from mockforge.services.generation.adapter import GenerationAdapter
from mockforge.services.generation.payloads import DEFAULT_SIZE, UPSCALE_SIZE
from mockforge.services.publisher import AssetPublisher

logger = structlog.get_logger(__name__)

ROLE_BY_JOB_TYPE = {
    JobType.IMAGE: AssetRole.SOURCE,
    JobType.BACKGROUND_REMOVAL: AssetRole.BACKGROUND_REMOVED,
    JobType.MOCKUP: AssetRole.MOCKUP,
    JobType.UPSCALE: AssetRole.UPSCALED,
}


def reduce_status(attempts: list[Attempt]) -> JobStatus:
    """Aggregate job status from attempt statuses.

    Any pending attempt keeps the job running; otherwise one succeeded attempt
    is enough for the job to succeed.
    """
    statuses = {attempt.status for attempt in attempts}
    if AttemptStatus.PENDING in statuses:
        return JobStatus.RUNNING
    if AttemptStatus.SUCCEEDED in statuses:
        return JobStatus.SUCCEEDED
    return JobStatus.FAILED


@dataclass(frozen=True)
class SettleOutcome:
    status: JobStatus
    publication_error: str | None = None


class Reconciler:
    """Drives a running job's attempts towards a terminal job status."""

    def __init__(self, adapter: GenerationAdapter, publisher: AssetPublisher):
        self.adapter = adapter
        self.publisher = publisher

    async def poll(self, uow, job: GenerationJob) -> SettleOutcome:
        """Poll outstanding attempts, persist changes, then settle the job."""
        attempts = job.get_attempts()
        outstanding = [i for i, attempt in enumerate(attempts) if attempt.is_outstanding]

        if outstanding:
            polled = await asyncio.gather(*(self.adapter.poll(attempts[i]) for i in outstanding))
            changed = False
            for i, attempt in zip(outstanding, polled):
                if attempt != attempts[i]:
                    changed = True
                    logger.info(
                        "attempt.poll.completed",
                        job_id=str(job.id),
                        backend_id=attempt.backend_id,
                        status=attempt.status.value,
                        error=attempt.error,
                    )
                attempts[i] = attempt

            # Only a real change touches updated_at, which drives staleness
            if changed:
                await uow.jobs.insert_attempts(job, attempts)
                await uow.commit()

        return await self.settle(uow, job, attempts)

    async def settle(
        self, uow, job: GenerationJob, attempts: list[Attempt] | None = None
    ) -> SettleOutcome:
        """Publish unpublished successes and apply the reduced status.

        Each published asset is committed on its own. A publication failure is
        rolled back and leaves the job running so the next tick retries it.
        """
        if attempts is None:
            attempts = job.get_attempts()

        publication_error = await self._publish_succeeded(uow, job, attempts)
        if publication_error is not None:
            return SettleOutcome(JobStatus.RUNNING, publication_error)

        status = reduce_status(attempts)
        if status == JobStatus.RUNNING:
            return SettleOutcome(status)

        if status == JobStatus.SUCCEEDED:
            assets = await uow.assets.list_by_job(job.id)
            output = {
                "urls": [asset.url for asset in assets],
                "assets": [
                    {
                        "id": str(asset.id),
                        "url": asset.url,
                        "path": asset.path,
                        "backend_id": asset.backend_id,
                    }
                    for asset in assets
                ],
            }
            await uow.jobs.update_status(job, JobStatus.SUCCEEDED, output=output)
            await uow.commit()
            logger.info(
                "job.succeeded",
                job_id=str(job.id),
                job_type=job.type.value,
                asset_count=len(assets),
            )
        else:
            error = str(
                AllBackendsFailed({a.backend_id: a.error or "unknown error" for a in attempts})
            )
            await uow.jobs.update_status(job, JobStatus.FAILED, error=error)
            await uow.commit()
            logger.warning(
                "job.failed",
                job_id=str(job.id),
                job_type=job.type.value,
                error_message=error,
            )

        return SettleOutcome(status)

    async def _publish_succeeded(
        self, uow, job: GenerationJob, attempts: list[Attempt]
    ) -> str | None:
        role = ROLE_BY_JOB_TYPE[job.type]
        job_input = job.input or {}
        default_size = UPSCALE_SIZE if job.type == JobType.UPSCALE else DEFAULT_SIZE
        distinguish_backend = len(attempts) > 1
        publication_error = None

        for attempt in attempts:
            if attempt.status != AttemptStatus.SUCCEEDED or not attempt.result_ref:
                continue
            if await uow.assets.exists_for_attempt(job.id, attempt.backend_id):
                continue

            metadata = {**attempt.metadata, "backend_id": attempt.backend_id}
            try:
                await self.publisher.publish(
                    uow,
                    job.product_id,
                    role,
                    attempt.result_ref,
                    metadata,
                    job_id=job.id,
                    backend_id=attempt.backend_id,
                    distinguish_backend=distinguish_backend,
                    template=job_input.get("template"),
                    width=int(attempt.metadata.get("width") or job_input.get("width") or default_size),
                    height=int(
                        attempt.metadata.get("height") or job_input.get("height") or default_size
                    ),
                )
                await uow.commit()
            except PublicationError as e:
                await uow.rollback()
                await uow.refresh(job)
                publication_error = str(e)
                logger.warning(
                    "asset.publish.failed",
                    job_id=str(job.id),
                    backend_id=attempt.backend_id,
                    error_type=type(e).__name__,
                    error_message=str(e),
                )

        return publication_error
