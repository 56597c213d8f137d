"""Dependency gating for queued jobs.

Decides whether a queued job's prerequisite jobs and assets are in a usable
terminal state, and resolves the input image the job should operate on.
"""

from dataclasses import dataclass, field
from enum import Enum
from uuid import UUID

import structlog

from mockforge.models.asset import AssetRole, ProductAsset
from mockforge.models.job import GenerationJob, JobStatus, JobType
from mockforge.services.exceptions import DependencyNotReady

logger = structlog.get_logger(__name__)


class Decision(str, Enum):
    PROCEED = "proceed"
    DEFER = "defer"
    PROCEED_WITH_FALLBACK = "proceed_with_fallback"


@dataclass(frozen=True)
class Resolution:
    """Outcome of dependency resolution.

    ``resolved_input`` is merged into the job input before dispatch; ``reason``
    explains a Defer or a fallback.
    """

    decision: Decision
    resolved_input: dict = field(default_factory=dict)
    reason: str | None = None

    @property
    def can_proceed(self) -> bool:
        return self.decision != Decision.DEFER


class DependencyResolver:
    """Gates mockup, upscale and background removal jobs on upstream state.

    Every dependent job waits for the product's image job to succeed; mockup
    and upscale also wait while a background removal job is still queued or
    running.
    """

    async def can_start(self, uow, job: GenerationJob) -> Resolution:
        try:
            if job.type == JobType.IMAGE:
                return Resolution(Decision.PROCEED)
            if job.type == JobType.BACKGROUND_REMOVAL:
                return await self._resolve_background_removal(uow, job)
            if job.type == JobType.MOCKUP:
                return await self._resolve_mockup(uow, job)
            if job.type == JobType.UPSCALE:
                return await self._resolve_upscale(uow, job)
        except DependencyNotReady as e:
            return Resolution(Decision.DEFER, reason=str(e))

        return Resolution(Decision.DEFER, reason=f"Unsupported job type {job.type}")

    async def _require_image_succeeded(self, uow, product_id: UUID) -> GenerationJob:
        image_job = await uow.jobs.get_latest_for_product(product_id, JobType.IMAGE)
        if image_job is None:
            raise DependencyNotReady("No image job exists for product")
        if image_job.status != JobStatus.SUCCEEDED:
            raise DependencyNotReady(f"Image job {image_job.id} is {image_job.status.value}")
        return image_job

    async def _select_asset(
        self, uow, job: GenerationJob, roles: list[AssetRole]
    ) -> ProductAsset:
        """Explicit ``source_asset_id`` from the job input, else the newest asset in ``roles``."""
        asset_id = (job.input or {}).get("source_asset_id")
        if asset_id:
            asset = await uow.assets.get_by_id(UUID(str(asset_id)))
            if asset is None or asset.product_id != job.product_id:
                raise DependencyNotReady(f"Source asset {asset_id} is not available")
            return asset

        asset = await uow.assets.get_latest_by_roles(job.product_id, roles)
        if asset is None:
            role_names = "/".join(role.value for role in roles)
            raise DependencyNotReady(f"No {role_names} asset published yet")
        return asset

    async def _resolve_background_removal(self, uow, job: GenerationJob) -> Resolution:
        await self._require_image_succeeded(uow, job.product_id)
        asset = await self._select_asset(uow, job, [AssetRole.SOURCE])
        return Resolution(
            Decision.PROCEED,
            {"image_url": asset.url, "image_asset_id": str(asset.id)},
        )

    async def _resolve_mockup(self, uow, job: GenerationJob) -> Resolution:
        await self._require_image_succeeded(uow, job.product_id)
        bg_job = await self._require_background_removal_settled(uow, job.product_id)

        if (job.input or {}).get("source_asset_id"):
            asset = await self._select_asset(uow, job, [AssetRole.SOURCE])
            return Resolution(Decision.PROCEED, self._garment_input(asset))

        if bg_job is not None and bg_job.status == JobStatus.SUCCEEDED:
            asset = await uow.assets.get_latest_by_roles(
                job.product_id, [AssetRole.BACKGROUND_REMOVED]
            )
            if asset is not None:
                return Resolution(Decision.PROCEED, self._garment_input(asset))
            decision, reason = (
                Decision.PROCEED_WITH_FALLBACK,
                "Background removed asset missing, using source asset",
            )
        elif bg_job is not None:
            decision, reason = (
                Decision.PROCEED_WITH_FALLBACK,
                f"Background removal failed: {bg_job.error or 'unknown error'}",
            )
        else:
            decision, reason = Decision.PROCEED, None

        source = await self._select_asset(uow, job, [AssetRole.SOURCE])
        if decision == Decision.PROCEED_WITH_FALLBACK:
            logger.info(
                "job.dependency.fallback",
                job_id=str(job.id),
                product_id=str(job.product_id),
                reason=reason,
                asset_id=str(source.id),
            )
        return Resolution(decision, self._garment_input(source), reason)

    async def _require_background_removal_settled(
        self, uow, product_id: UUID
    ) -> GenerationJob | None:
        """Latest background removal job for the product, if any; Defer while it is pending."""
        bg_job = await uow.jobs.get_latest_for_product(product_id, JobType.BACKGROUND_REMOVAL)
        if bg_job is not None and not bg_job.is_terminal:
            raise DependencyNotReady(f"Background removal job {bg_job.id} is {bg_job.status.value}")
        return bg_job

    async def _resolve_upscale(self, uow, job: GenerationJob) -> Resolution:
        await self._require_image_succeeded(uow, job.product_id)
        await self._require_background_removal_settled(uow, job.product_id)
        asset = await self._select_asset(
            uow, job, [AssetRole.BACKGROUND_REMOVED, AssetRole.SOURCE]
        )
        return Resolution(
            Decision.PROCEED,
            {"image_url": asset.url, "image_asset_id": str(asset.id)},
        )

    @staticmethod
    def _garment_input(asset: ProductAsset) -> dict:
        return {"garment_image_url": asset.url, "garment_asset_id": str(asset.id)}
