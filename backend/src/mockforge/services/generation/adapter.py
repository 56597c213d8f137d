"""Generation backend adapter.

Normalizes synchronous and asynchronous backends into Attempts. Dispatch has
no side effects beyond the outbound requests and never touches the job store.
"""

import asyncio
import time

import structlog

from mockforge.models.attempt import Attempt, AttemptMode, AttemptStatus
from mockforge.models.job import JobType
from mockforge.services.exceptions import BackendNotConfigured
from mockforge.services.generation.backends import (
    AsyncHandle,
    BackendRegistry,
    GenerationBackend,
    PollFailed,
    PollPending,
    PollSucceeded,
    SyncResult,
)
from mockforge.services.generation.payloads import GenerationRequest

logger = structlog.get_logger(__name__)


class GenerationAdapter:
    """Uniform start/poll interface over the registered backends."""

    def __init__(self, registry: BackendRegistry):
        self.registry = registry

    async def start(self, job_type: JobType, job_input: dict) -> list[Attempt]:
        """Dispatch a job to its backend(s) and return one Attempt per backend.

        Image jobs fan out to every configured image backend concurrently. A
        backend that fails at dispatch yields a failed Attempt instead of
        raising, so one backend never aborts the others.

        Raises:
            BackendNotConfigured: No backend serves this job type
            ValueError: The request itself is invalid (e.g. empty prompt); no
                Attempt is created in that case
        """
        backends = self.registry.backends_for(job_type)
        if not backends:
            raise BackendNotConfigured(f"No generation backend configured for {job_type.value}")
        if job_type != JobType.IMAGE:
            backends = backends[:1]

        request = GenerationRequest(job_type=job_type, input=dict(job_input))
        # Build every payload up front: an invalid request fails the job before dispatch
        payloads = [(backend, backend.build_payload(request)) for backend in backends]

        attempts = await asyncio.gather(
            *(self._dispatch(backend, payload) for backend, payload in payloads)
        )
        return list(attempts)

    async def _dispatch(self, backend: GenerationBackend, payload: dict) -> Attempt:
        start_time = time.time()
        try:
            result = await backend.invoke(payload)
        except Exception as e:
            logger.warning(
                "attempt.dispatch.failed",
                backend_id=backend.backend_id,
                error_type=type(e).__name__,
                error_message=str(e),
            )
            return Attempt(
                backend_id=backend.backend_id,
                mode=backend.mode,
                status=AttemptStatus.FAILED,
                error=str(e) or type(e).__name__,
            )

        duration = time.time() - start_time

        if isinstance(result, SyncResult):
            logger.info(
                "attempt.dispatch.completed",
                backend_id=backend.backend_id,
                duration_seconds=duration,
            )
            return Attempt(
                backend_id=backend.backend_id,
                mode=AttemptMode.SYNCHRONOUS,
                status=AttemptStatus.SUCCEEDED,
                result_ref=result.result_ref,
                metadata=result.metadata,
            )

        if isinstance(result, AsyncHandle):
            logger.info(
                "attempt.dispatch.accepted",
                backend_id=backend.backend_id,
                external_handle=result.handle,
                duration_seconds=duration,
            )
            return Attempt(
                backend_id=backend.backend_id,
                mode=AttemptMode.ASYNCHRONOUS,
                external_handle=result.handle,
                status=AttemptStatus.PENDING,
                metadata=result.metadata,
            )

        return Attempt(
            backend_id=backend.backend_id,
            mode=backend.mode,
            status=AttemptStatus.FAILED,
            error=f"Unexpected dispatch result {type(result).__name__}",
        )

    async def poll(self, attempt: Attempt) -> Attempt:
        """Query the backend for an outstanding attempt's state.

        Terminal success/failure update the attempt; a still-running prediction
        or a poll-time error (network, rate limit) leaves it pending.
        """
        if not attempt.is_outstanding:
            return attempt

        try:
            backend = self.registry.get(attempt.backend_id)
        except BackendNotConfigured as e:
            return attempt.failed(str(e))

        try:
            result = await backend.poll(attempt.external_handle or "")
        except Exception as e:
            logger.warning(
                "attempt.poll.failed",
                backend_id=attempt.backend_id,
                external_handle=attempt.external_handle,
                error_type=type(e).__name__,
                error_message=str(e),
            )
            return attempt

        if isinstance(result, PollSucceeded):
            merged = attempt.model_copy(update={"metadata": {**attempt.metadata, **result.metadata}})
            return merged.succeeded(result.result_ref)

        if isinstance(result, PollFailed):
            return attempt.failed(result.reason)

        if isinstance(result, PollPending):
            logger.debug(
                "attempt.poll.pending",
                backend_id=attempt.backend_id,
                external_handle=attempt.external_handle,
                backend_status=result.status,
            )
        return attempt
