"""Application configuration using Pydantic BaseSettings."""

import logging

import structlog
from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from mockforge.models.attempt import AttemptMode

REMOVE_BG_BACKEND = "remove-bg"


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore", populate_by_name=True
    )

    # Database Configuration
    database_url: str = Field(alias="DATABASE_URL")
    db_pool_size: int = Field(default=20, alias="DB_POOL_SIZE")

    # Application Environment
    app_env: str = Field(default="development", alias="APP_ENV")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    # Scheduler
    poll_interval_seconds: float = Field(default=5, alias="POLL_INTERVAL_SECONDS")
    error_backoff_seconds: float = Field(default=5, ge=0, alias="ERROR_BACKOFF_SECONDS")
    worker_batch_size: int = Field(default=10, alias="WORKER_BATCH_SIZE")
    max_concurrent_jobs: int = Field(default=8, ge=1, alias="MAX_CONCURRENT_JOBS")
    stale_job_timeout_minutes: int = Field(default=30, ge=1, alias="STALE_JOB_TIMEOUT_MINUTES")
    dependency_wait_timeout_minutes: int = Field(
        default=120, ge=1, alias="DEPENDENCY_WAIT_TIMEOUT_MINUTES"
    )

    # Generation backends
    replicate_api_token: str = Field(default="", alias="REPLICATE_API_TOKEN")
    image_backends: str = Field(
        default="black-forest-labs/flux-1.1-pro-ultra@sync", alias="IMAGE_BACKENDS"
    )
    background_removal_backend: str = Field(
        default=REMOVE_BG_BACKEND, alias="BACKGROUND_REMOVAL_BACKEND"
    )
    removebg_api_key: str = Field(default="", alias="REMOVEBG_API_KEY")
    replicate_mockup_model: str = Field(default="google/nano-banana", alias="REPLICATE_MOCKUP_MODEL")
    replicate_upscale_model: str = Field(
        default="recraft-ai/recraft-v3", alias="REPLICATE_UPSCALE_MODEL"
    )
    mockup_base_image_url: str = Field(default="", alias="MOCKUP_BASE_IMAGE_URL")
    http_timeout_seconds: float = Field(default=30.0, alias="HTTP_TIMEOUT_SECONDS")

    # Blob store (S3)
    aws_s3_bucket: str = Field(default="", alias="AWS_S3_BUCKET")
    aws_region: str = Field(default="us-east-1", alias="AWS_REGION")
    asset_public_base_url: str = Field(default="", alias="ASSET_PUBLIC_BASE_URL")

    @property
    def image_backend_specs(self) -> list[tuple[str, AttemptMode]]:
        """Parse IMAGE_BACKENDS into (model_id, mode) pairs.

        Each entry is ``owner/model[:version]@sync`` or ``...@async``. Entries
        without a suffix are treated as synchronous.
        """
        specs = []
        for entry in self.image_backends.split(","):
            entry = entry.strip()
            if not entry:
                continue
            model_id, _, mode = entry.rpartition("@")
            if not model_id:
                model_id, mode = entry, "sync"
            if mode not in ("sync", "async"):
                raise ValueError(f"Invalid backend mode '{mode}' in IMAGE_BACKENDS entry '{entry}'")
            specs.append(
                (
                    model_id,
                    AttemptMode.SYNCHRONOUS if mode == "sync" else AttemptMode.ASYNCHRONOUS,
                )
            )
        return specs

    @model_validator(mode="after")
    def validate_required_config(self) -> "Settings":
        """Fail fast when credentials needed by the worker are missing.

        Validation is skipped in test environments.
        """
        if self.app_env in ("test", "testing"):
            return self

        missing = []

        if not self.replicate_api_token:
            missing.append(
                "REPLICATE_API_TOKEN: Get your API token from https://replicate.com/account/api-tokens"
            )

        if self.background_removal_backend == REMOVE_BG_BACKEND and not self.removebg_api_key:
            missing.append("REMOVEBG_API_KEY: Required when BACKGROUND_REMOVAL_BACKEND=remove-bg")

        if not self.aws_s3_bucket:
            missing.append("AWS_S3_BUCKET: Bucket that receives published assets")

        if not self.image_backend_specs:
            missing.append("IMAGE_BACKENDS: At least one image generation backend is required")

        if missing:
            error_msg = "CRITICAL: Missing required environment variables:\n\n" + "\n".join(
                f"  - {m}" for m in missing
            )
            error_msg += "\n\nThe worker cannot start without these variables."
            raise ValueError(error_msg)

        return self


def configure_logging(settings: Settings) -> None:
    """Configure structlog based on application environment.

    - Production: JSON output for log aggregation
    - Development: Console output for human readability
    """
    level = logging.getLevelName(settings.log_level.upper())
    if not isinstance(level, int):
        level = logging.INFO

    if settings.app_env == "production":
        renderer_processors = [
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    else:
        renderer_processors = [structlog.dev.ConsoleRenderer()]

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            *renderer_processors,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )
