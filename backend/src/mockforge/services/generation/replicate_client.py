"""Replicate API client for generation backends with error classification."""

import asyncio
from dataclasses import dataclass
from typing import Any, Optional

import replicate
from replicate.exceptions import ReplicateException

from mockforge.services.exceptions import (
    BackendAuthError,
    BackendDispatchError,
    BackendTransientError,
    ContentPolicyError,
)

# Replicate prediction states
PREDICTION_SUCCEEDED = "succeeded"
PREDICTION_FAILED = "failed"
PREDICTION_CANCELED = "canceled"


@dataclass(frozen=True)
class PredictionState:
    """Snapshot of a Replicate prediction."""

    id: str
    status: str
    output: Any = None
    error: Optional[str] = None
    metrics: Optional[dict] = None


def classify_error(exception: Exception) -> BackendDispatchError:
    """Classify exception into retry category.

    Args:
        exception: Original exception from Replicate SDK or network layer

    Returns:
        Classified BackendDispatchError subclass instance

    Classification rules:
        - Timeout errors → BackendTransientError
        - 429 (rate limit) → BackendTransientError
        - 503 (service unavailable) → BackendTransientError
        - 401/403 (authentication) → BackendAuthError
        - Content policy violations → ContentPolicyError
        - Connection errors → BackendTransientError
        - Anything else → BackendDispatchError
    """
    error_message = str(exception)
    error_message_lower = error_message.lower()

    if "timeout" in error_message_lower or isinstance(exception, TimeoutError):
        return BackendTransientError(f"Network timeout: {error_message}")

    if "429" in error_message or "rate limit" in error_message_lower:
        return BackendTransientError(f"Rate limit exceeded: {error_message}")

    if "503" in error_message or "service unavailable" in error_message_lower:
        return BackendTransientError(f"Service unavailable: {error_message}")

    if (
        "401" in error_message
        or "403" in error_message
        or "unauthorized" in error_message_lower
        or "forbidden" in error_message_lower
        or "authentication" in error_message_lower
        or "invalid api token" in error_message_lower
    ):
        return BackendAuthError(f"Authentication failed: {error_message}")

    if (
        "content policy" in error_message_lower
        or "nsfw" in error_message_lower
        or "safety" in error_message_lower
        or "inappropriate" in error_message_lower
    ):
        return ContentPolicyError(f"Content policy violation: {error_message}")

    if isinstance(exception, (ConnectionError, OSError)):
        return BackendTransientError(f"Connection error: {error_message}")

    return BackendDispatchError(f"Replicate error: {error_message}")


def extract_output_url(output: Any) -> str:
    """Extract the first image URL from a Replicate output.

    Output format varies by model: a single URL string, a FileOutput object, or a
    list of either. Only the first item of a list is used.

    Raises:
        BackendDispatchError: If no URL can be found
    """
    if isinstance(output, (list, tuple)):
        if not output:
            raise BackendDispatchError("Replicate returned an empty output list")
        output = output[0]

    if isinstance(output, str) and output:
        return output

    url = getattr(output, "url", None)
    if callable(url):
        url = url()
    if url:
        return str(url)

    raise BackendDispatchError(f"Unexpected output format from Replicate: {type(output).__name__}")


def _model_params(model_id: str) -> dict[str, str]:
    # "owner/name:versionhash" targets a specific version
    if ":" in model_id:
        return {"version": model_id.split(":", 1)[1]}
    return {"model": model_id}


class ReplicateClient:
    """Async facade over the synchronous Replicate SDK.

    SDK calls run in a worker thread so a slow backend never blocks the
    scheduler's event loop.
    """

    def __init__(self, api_token: str):
        self.api_token = api_token
        self._client = replicate.Client(api_token=api_token) if api_token else None

    def _require_client(self) -> "replicate.Client":
        if self._client is None:
            raise BackendAuthError("REPLICATE_API_TOKEN not configured")
        return self._client

    async def run(self, model_id: str, model_input: dict) -> str:
        """Run a model to completion and return the output image URL.

        Raises:
            BackendDispatchError: Classified failure (transient, auth, content policy, other)
        """
        client = self._require_client()
        try:
            output = await asyncio.to_thread(client.run, model_id, input=model_input)
        except (ReplicateException, ConnectionError, OSError, TimeoutError) as e:
            raise classify_error(e) from e
        return extract_output_url(output)

    async def create_prediction(self, model_id: str, model_input: dict) -> str:
        """Start an asynchronous prediction and return its id."""
        client = self._require_client()
        try:
            prediction = await asyncio.to_thread(
                client.predictions.create, input=model_input, **_model_params(model_id)
            )
        except (ReplicateException, ConnectionError, OSError, TimeoutError) as e:
            raise classify_error(e) from e
        return prediction.id

    async def get_prediction(self, prediction_id: str) -> PredictionState:
        """Fetch the current state of a prediction."""
        client = self._require_client()
        try:
            prediction = await asyncio.to_thread(client.predictions.get, prediction_id)
        except (ReplicateException, ConnectionError, OSError, TimeoutError) as e:
            raise classify_error(e) from e
        error = prediction.error
        return PredictionState(
            id=prediction.id,
            status=prediction.status,
            output=prediction.output,
            error=str(error) if error else None,
            metrics=getattr(prediction, "metrics", None),
        )
