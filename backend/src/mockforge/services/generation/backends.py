"""Generation backends and the registry that selects them.

Every external AI service is one GenerationBackend. A backend is either
synchronous (``invoke`` returns the result) or asynchronous (``invoke``
returns a handle that is later passed to ``poll``).
"""

import base64
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Callable, Union

import httpx
import structlog

from mockforge.core.config import REMOVE_BG_BACKEND, Settings
from mockforge.models.attempt import AttemptMode
from mockforge.models.job import JobType
from mockforge.services.exceptions import (
    BackendAuthError,
    BackendDispatchError,
    BackendNotConfigured,
    BackendTransientError,
)
from mockforge.services.generation.payloads import (
    GenerationRequest,
    build_background_removal_payload,
    build_image_payload,
    build_mockup_payload,
    build_upscale_payload,
)
from mockforge.services.generation.replicate_client import (
    PREDICTION_CANCELED,
    PREDICTION_FAILED,
    PREDICTION_SUCCEEDED,
    ReplicateClient,
    extract_output_url,
)

logger = structlog.get_logger(__name__)

REMOVE_BG_URL = "https://api.remove.bg/v1.0/removebg"


@dataclass(frozen=True)
class SyncResult:
    """Result available at dispatch time."""

    result_ref: str
    metadata: dict = field(default_factory=dict)


@dataclass(frozen=True)
class AsyncHandle:
    """Correlation token for a result that must be polled."""

    handle: str
    metadata: dict = field(default_factory=dict)


@dataclass(frozen=True)
class PollPending:
    status: str = "processing"


@dataclass(frozen=True)
class PollSucceeded:
    result_ref: str
    metadata: dict = field(default_factory=dict)


@dataclass(frozen=True)
class PollFailed:
    reason: str


InvokeResult = Union[SyncResult, AsyncHandle]
PollResult = Union[PollPending, PollSucceeded, PollFailed]


class GenerationBackend(ABC):
    """One external generation service."""

    backend_id: str
    mode: AttemptMode

    @abstractmethod
    def build_payload(self, request: GenerationRequest) -> dict:
        """Translate a generic request into this backend's request body."""

    @abstractmethod
    async def invoke(self, payload: dict) -> InvokeResult:
        """Send the request. Raises BackendDispatchError on failure."""

    async def poll(self, handle: str) -> PollResult:
        raise NotImplementedError(f"{self.backend_id} is synchronous and cannot be polled")


class ReplicateRunBackend(GenerationBackend):
    """Replicate model run to completion inside the dispatch call."""

    mode = AttemptMode.SYNCHRONOUS

    def __init__(
        self,
        client: ReplicateClient,
        model_id: str,
        payload_builder: Callable[[str, GenerationRequest], dict] = build_image_payload,
    ):
        self.client = client
        self.model_id = model_id
        self.backend_id = model_id
        self.payload_builder = payload_builder

    def build_payload(self, request: GenerationRequest) -> dict:
        return self.payload_builder(self.model_id, request)

    async def invoke(self, payload: dict) -> SyncResult:
        url = await self.client.run(self.model_id, payload)
        return SyncResult(result_ref=url, metadata={"model": self.model_id})


class ReplicatePredictionBackend(GenerationBackend):
    """Replicate prediction created at dispatch and polled until terminal."""

    mode = AttemptMode.ASYNCHRONOUS

    def __init__(
        self,
        client: ReplicateClient,
        model_id: str,
        payload_builder: Callable[[str, GenerationRequest], dict] = build_image_payload,
        backend_id: str | None = None,
    ):
        self.client = client
        self.model_id = model_id
        self.backend_id = backend_id or model_id
        self.payload_builder = payload_builder

    def build_payload(self, request: GenerationRequest) -> dict:
        return self.payload_builder(self.model_id, request)

    async def invoke(self, payload: dict) -> AsyncHandle:
        prediction_id = await self.client.create_prediction(self.model_id, payload)
        return AsyncHandle(handle=prediction_id, metadata={"model": self.model_id})

    async def poll(self, handle: str) -> PollResult:
        prediction = await self.client.get_prediction(handle)

        if prediction.status == PREDICTION_SUCCEEDED:
            try:
                url = extract_output_url(prediction.output)
            except BackendDispatchError as e:
                return PollFailed(reason=str(e))
            return PollSucceeded(result_ref=url, metadata={"model": self.model_id})

        if prediction.status == PREDICTION_FAILED:
            return PollFailed(reason=prediction.error or "Prediction failed")

        if prediction.status == PREDICTION_CANCELED:
            return PollFailed(reason="Prediction was canceled")

        return PollPending(status=prediction.status)


class RemoveBgBackend(GenerationBackend):
    """Remove.bg HTTP API; returns the cut-out image inline as a data URL."""

    mode = AttemptMode.SYNCHRONOUS
    backend_id = REMOVE_BG_BACKEND

    def __init__(
        self,
        api_key: str,
        timeout: float = 30.0,
        client_factory: Callable[[], httpx.AsyncClient] | None = None,
    ):
        self.api_key = api_key
        self.timeout = timeout
        self.client_factory = client_factory or (lambda: httpx.AsyncClient(timeout=self.timeout))

    def build_payload(self, request: GenerationRequest) -> dict:
        return build_background_removal_payload(request)

    async def invoke(self, payload: dict) -> SyncResult:
        if not self.api_key:
            raise BackendAuthError("REMOVEBG_API_KEY is not configured")

        try:
            async with self.client_factory() as client:
                response = await client.post(
                    REMOVE_BG_URL, json=payload, headers={"X-Api-Key": self.api_key}
                )
        except httpx.TimeoutException as e:
            raise BackendTransientError(f"Remove.bg timeout: {e}") from e
        except httpx.HTTPError as e:
            raise BackendTransientError(f"Remove.bg network error: {e}") from e

        if response.status_code == 429:
            raise BackendTransientError(f"Remove.bg rate limit exceeded: {response.text}")
        if response.status_code >= 500:
            raise BackendTransientError(
                f"Remove.bg unavailable ({response.status_code}): {response.text}"
            )
        if response.status_code in (401, 403):
            raise BackendAuthError(f"Remove.bg rejected API key ({response.status_code})")
        if response.status_code != 200:
            raise BackendDispatchError(
                f"Remove.bg API error ({response.status_code}): {_removebg_error(response)}"
            )

        encoded = base64.b64encode(response.content).decode("ascii")
        return SyncResult(result_ref=f"data:image/png;base64,{encoded}", metadata={})


def _removebg_error(response: httpx.Response) -> str:
    try:
        return response.json()["errors"][0]["title"]
    except (ValueError, KeyError, IndexError, TypeError):
        return response.text


class BackendRegistry:
    """Backends keyed by backend id, grouped by the job types they serve."""

    def __init__(self):
        self._backends: dict[str, GenerationBackend] = {}
        self._by_type: dict[JobType, list[str]] = {}

    def register(self, job_type: JobType, backend: GenerationBackend) -> None:
        self._backends[backend.backend_id] = backend
        ids = self._by_type.setdefault(job_type, [])
        if backend.backend_id not in ids:
            ids.append(backend.backend_id)

    def get(self, backend_id: str) -> GenerationBackend:
        try:
            return self._backends[backend_id]
        except KeyError:
            raise BackendNotConfigured(f"Unknown generation backend: {backend_id}") from None

    def backends_for(self, job_type: JobType) -> list[GenerationBackend]:
        return [self._backends[backend_id] for backend_id in self._by_type.get(job_type, [])]


def _replicate_image_input(model_id: str, request: GenerationRequest) -> dict:
    return {"image": request.image_url}


def build_registry(settings: Settings, replicate_client: ReplicateClient | None = None) -> BackendRegistry:
    """Build the backend registry described by the settings."""
    client = replicate_client or ReplicateClient(settings.replicate_api_token)
    registry = BackendRegistry()

    for model_id, mode in settings.image_backend_specs:
        if mode == AttemptMode.SYNCHRONOUS:
            registry.register(JobType.IMAGE, ReplicateRunBackend(client, model_id))
        else:
            registry.register(JobType.IMAGE, ReplicatePredictionBackend(client, model_id))

    if settings.background_removal_backend == REMOVE_BG_BACKEND:
        registry.register(
            JobType.BACKGROUND_REMOVAL,
            RemoveBgBackend(settings.removebg_api_key, timeout=settings.http_timeout_seconds),
        )
    else:
        registry.register(
            JobType.BACKGROUND_REMOVAL,
            ReplicatePredictionBackend(
                client,
                settings.background_removal_backend,
                _replicate_image_input,
                backend_id=f"{settings.background_removal_backend}#background_removal",
            ),
        )

    base_image_url = settings.mockup_base_image_url
    registry.register(
        JobType.MOCKUP,
        ReplicatePredictionBackend(
            client,
            settings.replicate_mockup_model,
            lambda _model, request: build_mockup_payload(request, base_image_url),
            backend_id=f"{settings.replicate_mockup_model}#mockup",
        ),
    )

    registry.register(
        JobType.UPSCALE,
        ReplicatePredictionBackend(
            client,
            settings.replicate_upscale_model,
            lambda _model, request: build_upscale_payload(request),
            backend_id=f"{settings.replicate_upscale_model}#upscale",
        ),
    )

    logger.info(
        "backends.registered",
        image=[b.backend_id for b in registry.backends_for(JobType.IMAGE)],
        background_removal=settings.background_removal_backend,
        mockup=settings.replicate_mockup_model,
        upscale=settings.replicate_upscale_model,
    )
    return registry
