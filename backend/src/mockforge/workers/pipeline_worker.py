"""Poll scheduler for the generation pipeline.

Wakes on a fixed interval, starts queued jobs whose dependencies are ready
and reconciles running jobs until they reach a terminal status.

Each job is processed in its own Unit of Work with explicit commits at
decision points (dispatch, each published asset, terminal status), so one
job's failure never rolls back another job's progress. The job row is locked
with FOR UPDATE SKIP LOCKED and only processed if it is still in the expected
pre-state, which keeps multiple worker processes from mutating the same job.
"""

import asyncio
import time
from datetime import timedelta
from typing import Awaitable, Callable
from uuid import UUID

import structlog

from mockforge.core.config import Settings
from mockforge.core.timezone import as_utc, utcnow
from mockforge.models.job import JobStatus
from mockforge.services.dependency_resolver import Decision, DependencyResolver
from mockforge.services.exceptions import BackendError
from mockforge.services.generation.adapter import GenerationAdapter
from mockforge.services.reconciler import Reconciler

logger = structlog.get_logger(__name__)


class PipelineScheduler:
    """Owns the polling loop and its lifecycle.

    Dependencies are injected so tests can substitute fakes for the job store,
    the backends and the blob store.
    """

    def __init__(
        self,
        uow_factory: Callable[[], Awaitable],
        adapter: GenerationAdapter,
        resolver: DependencyResolver,
        reconciler: Reconciler,
        settings: Settings,
    ):
        self.uow_factory = uow_factory
        self.adapter = adapter
        self.resolver = resolver
        self.reconciler = reconciler
        self.settings = settings
        self._semaphore = asyncio.Semaphore(settings.max_concurrent_jobs)
        self._task: asyncio.Task | None = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> asyncio.Task:
        """Start the polling loop in a background task."""
        if self.is_running:
            raise RuntimeError("Scheduler is already running")
        self._task = asyncio.create_task(self.run(), name="pipeline-scheduler")
        return self._task

    async def stop(self) -> None:
        """Cancel the polling loop and wait for the in-flight tick to unwind."""
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        finally:
            self._task = None

    async def run(self) -> None:
        """Main loop. Ticks never overlap: the next sleep starts after a tick completes."""
        logger.info(
            "worker.started",
            poll_interval=self.settings.poll_interval_seconds,
            batch_size=self.settings.worker_batch_size,
            max_concurrent_jobs=self.settings.max_concurrent_jobs,
            error_backoff=self.settings.error_backoff_seconds,
        )

        try:
            while True:
                try:
                    await self.tick()
                    await asyncio.sleep(self.settings.poll_interval_seconds)

                except asyncio.CancelledError:
                    raise

                except Exception as e:
                    logger.error(
                        "worker.error",
                        error_type=type(e).__name__,
                        error_message=str(e),
                        exc_info=True,
                    )
                    await asyncio.sleep(self.settings.error_backoff_seconds)

        except asyncio.CancelledError:
            logger.info("worker.stopped")
            raise

    async def tick(self) -> dict[str, int]:
        """Run one scheduling pass.

        Both job lists are read at the start of the tick, so a job dispatched
        in this tick is first polled on the next one.

        Returns:
            Counts of queued and running jobs processed and of unexpected errors
        """
        start_time = time.time()

        async with await self.uow_factory() as uow:
            queued = await uow.jobs.list_by_status(
                JobStatus.QUEUED, limit=self.settings.worker_batch_size
            )
            running = await uow.jobs.list_by_status(JobStatus.RUNNING)
            queued_ids = [job.id for job in queued]
            running_ids = [job.id for job in running]

        errors = await self._process_all(self.process_queued_job, queued_ids)
        errors += await self._process_all(self.process_running_job, running_ids)

        summary = {"queued": len(queued_ids), "running": len(running_ids), "errors": errors}
        if queued_ids or running_ids:
            logger.info(
                "worker.tick.completed",
                duration_seconds=time.time() - start_time,
                **summary,
            )
        return summary

    async def _process_all(
        self, handler: Callable[[UUID], Awaitable], job_ids: list[UUID]
    ) -> int:
        if not job_ids:
            return 0

        async def guarded(job_id: UUID):
            async with self._semaphore:
                return await handler(job_id)

        results = await asyncio.gather(*(guarded(job_id) for job_id in job_ids), return_exceptions=True)

        errors = 0
        for job_id, result in zip(job_ids, results):
            if isinstance(result, Exception):
                errors += 1
                logger.error(
                    "job.processing.failed",
                    job_id=str(job_id),
                    error_type=type(result).__name__,
                    error_message=str(result),
                )
        return errors

    async def process_queued_job(self, job_id: UUID) -> JobStatus | None:
        """Gate, dispatch and settle one queued job.

        Returns:
            The job's status after processing, or None if it was skipped
        """
        async with await self.uow_factory() as uow:
            job = await uow.jobs.get_for_update(job_id)
            if job is None or job.status != JobStatus.QUEUED:
                logger.debug("job.skipped", job_id=str(job_id), expected=JobStatus.QUEUED.value)
                return None

            resolution = await self.resolver.can_start(uow, job)

            if resolution.decision == Decision.DEFER:
                waited = utcnow() - as_utc(job.created_at)
                timeout = timedelta(minutes=self.settings.dependency_wait_timeout_minutes)
                if waited > timeout:
                    error = (
                        f"Dependencies not ready after "
                        f"{self.settings.dependency_wait_timeout_minutes} minutes: {resolution.reason}"
                    )
                    await uow.jobs.update_status(job, JobStatus.FAILED, error=error)
                    await uow.commit()
                    logger.warning("job.dependency.timeout", job_id=str(job.id), error_message=error)
                    return JobStatus.FAILED

                logger.info(
                    "job.deferred",
                    job_id=str(job.id),
                    job_type=job.type.value,
                    reason=resolution.reason,
                )
                return JobStatus.QUEUED

            logger.info(
                "job.dispatch.started",
                job_id=str(job.id),
                job_type=job.type.value,
                decision=resolution.decision.value,
            )

            try:
                if resolution.resolved_input:
                    await uow.jobs.append_input(job, resolution.resolved_input)
                attempts = await self.adapter.start(job.type, job.input)
            except (BackendError, ValueError) as e:
                await uow.jobs.update_status(job, JobStatus.FAILED, error=str(e))
                await uow.commit()
                logger.error(
                    "job.dispatch.failed",
                    job_id=str(job.id),
                    error_type=type(e).__name__,
                    error_message=str(e),
                )
                return JobStatus.FAILED

            await uow.jobs.update_status(job, JobStatus.RUNNING)
            await uow.jobs.insert_attempts(job, attempts)
            await uow.commit()

            logger.info(
                "job.dispatched",
                job_id=str(job.id),
                attempts=[(a.backend_id, a.status.value) for a in attempts],
            )

            outcome = await self.reconciler.settle(uow, job, attempts)
            return outcome.status

    async def process_running_job(self, job_id: UUID) -> JobStatus | None:
        """Poll and settle one running job, failing it once it goes stale."""
        async with await self.uow_factory() as uow:
            job = await uow.jobs.get_for_update(job_id)
            if job is None or job.status != JobStatus.RUNNING:
                logger.debug("job.skipped", job_id=str(job_id), expected=JobStatus.RUNNING.value)
                return None

            stale_after = timedelta(minutes=self.settings.stale_job_timeout_minutes)
            if utcnow() - as_utc(job.updated_at) <= stale_after:
                outcome = await self.reconciler.poll(uow, job)
                return outcome.status

            return await self._expire_stale_job(uow, job)

    async def _expire_stale_job(self, uow, job) -> JobStatus:
        minutes = self.settings.stale_job_timeout_minutes
        reason = f"Timed out after {minutes} minutes without progress"

        attempts = job.get_attempts()
        expired = [a.failed(reason) if a.is_outstanding else a for a in attempts]
        if expired != attempts:
            await uow.jobs.insert_attempts(job, expired)
            await uow.commit()

        logger.warning("job.stale", job_id=str(job.id), timeout_minutes=minutes)

        outcome = await self.reconciler.settle(uow, job, expired)
        if outcome.status != JobStatus.RUNNING:
            return outcome.status

        error = f"{reason}: publication failed: {outcome.publication_error}"
        await uow.jobs.update_status(job, JobStatus.FAILED, error=error)
        await uow.commit()
        return JobStatus.FAILED
