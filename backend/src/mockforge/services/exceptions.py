"""Service error hierarchy for the generation pipeline.

This module defines the exception hierarchy for service-level errors:
- ServiceError: Base for all service errors
- TransientError: Retryable errors (network, rate limits, timeouts)
- PermanentError: Non-retryable errors (authentication, validation)

Pipeline failures are captured at the narrowest scope possible (one attempt)
and only escalate to a job failure through AllBackendsFailed.
"""


class ServiceError(Exception):
    """Base exception for all service errors."""

    pass


class TransientError(ServiceError):
    """Transient error that may succeed on retry.

    Examples:
    - Network timeouts
    - Rate limit exceeded (429)
    - Service unavailable (503)
    """

    pass


class PermanentError(ServiceError):
    """Permanent error that will not succeed on retry.

    Examples:
    - Authentication failures (401, 403)
    - Invalid request parameters (400)
    - Configuration errors
    """

    pass


class DependencyNotReady(ServiceError):
    """A prerequisite job or asset is not in a usable terminal state yet.

    Recoverable: the job stays queued and is retried on the next tick.
    """

    pass


# Generation backend errors
class BackendError(ServiceError):
    """Base exception for generation backend errors."""

    retryable: bool = False


class BackendDispatchError(BackendError):
    """A backend rejected or failed a request at dispatch time."""

    pass


class BackendTransientError(BackendDispatchError):
    """Timeout, rate limit or service unavailability at the backend."""

    retryable = True


class ContentPolicyError(BackendDispatchError):
    """The backend refused the prompt or image on safety grounds."""

    pass


class BackendAuthError(BackendDispatchError):
    """Invalid or missing backend credentials (401, 403)."""

    pass


class BackendTerminalFailure(BackendError):
    """The backend reported a failed or canceled prediction."""

    pass


class BackendNotConfigured(BackendError):
    """No backend is registered for a job type or backend id."""

    pass


# Publication errors
class PublicationError(TransientError):
    """Base exception for asset publication errors (retried next tick)."""

    pass


class AssetDownloadError(PublicationError):
    """The generated image could not be fetched or decoded."""

    pass


class BlobStoreError(PublicationError):
    """Upload to the blob store failed."""

    pass


class CatalogError(PublicationError):
    """The asset catalog row could not be written."""

    pass


class AllBackendsFailed(PermanentError):
    """Every attempt of a job failed.

    The message joins each backend's error so the user-visible failure reason
    is complete.
    """

    def __init__(self, errors: dict[str, str]):
        self.errors = errors
        joined = "; ".join(f"{backend}: {reason}" for backend, reason in errors.items())
        super().__init__(joined or "No backend attempts were made")
