"""ProductAsset repository - the asset catalog."""

from typing import Iterable
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from mockforge.models.asset import AssetRole, ProductAsset


class ProductAssetRepository:
    """Repository for ProductAsset entities.

    Assets are insert-only; the catalog has no update method.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    async def add(self, asset: ProductAsset) -> ProductAsset:
        """Insert a catalog row.

        Args:
            asset: ProductAsset entity to persist

        Returns:
            Persisted asset with generated ID
        """
        self.session.add(asset)
        await self.session.flush()
        return asset

    async def get_by_id(self, asset_id: UUID) -> ProductAsset | None:
        result = await self.session.execute(
            select(ProductAsset).where(ProductAsset.id == asset_id)  # type: ignore[arg-type]
        )
        return result.scalar_one_or_none()

    async def list_by_product(
        self, product_id: UUID, roles: Iterable[AssetRole] | None = None
    ) -> list[ProductAsset]:
        """Assets of a product, oldest first, optionally filtered by role."""
        query = select(ProductAsset).where(ProductAsset.product_id == product_id)  # type: ignore[arg-type]
        if roles is not None:
            query = query.where(ProductAsset.role.in_(list(roles)))  # type: ignore[attr-defined]
        query = query.order_by(ProductAsset.created_at.asc())  # type: ignore[attr-defined]
        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def get_latest_by_roles(
        self, product_id: UUID, roles: Iterable[AssetRole]
    ) -> ProductAsset | None:
        """Most recently published asset of a product in any of the given roles."""
        result = await self.session.execute(
            select(ProductAsset)
            .where(ProductAsset.product_id == product_id)  # type: ignore[arg-type]
            .where(ProductAsset.role.in_(list(roles)))  # type: ignore[attr-defined]
            .order_by(ProductAsset.created_at.desc())  # type: ignore[attr-defined]
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def list_by_job(self, job_id: UUID) -> list[ProductAsset]:
        result = await self.session.execute(
            select(ProductAsset)
            .where(ProductAsset.job_id == job_id)  # type: ignore[arg-type]
            .order_by(ProductAsset.created_at.asc())  # type: ignore[attr-defined]
        )
        return list(result.scalars().all())

    async def exists_for_attempt(self, job_id: UUID, backend_id: str) -> bool:
        """Whether the attempt (job, backend) has already been published."""
        result = await self.session.execute(
            select(ProductAsset.id)
            .where(ProductAsset.job_id == job_id)  # type: ignore[arg-type]
            .where(ProductAsset.backend_id == backend_id)  # type: ignore[arg-type]
            .limit(1)
        )
        return result.scalar_one_or_none() is not None
