"""Product repository for the pipeline's narrow view of products."""

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from mockforge.models.product import Product


class ProductRepository:
    """Repository for Product entities."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def add(self, product: Product) -> Product:
        self.session.add(product)
        await self.session.flush()
        return product

    async def get_by_id(self, product_id: UUID) -> Product | None:
        result = await self.session.execute(
            select(Product).where(Product.id == product_id)  # type: ignore[arg-type]
        )
        return result.scalar_one_or_none()

    async def append_image(self, product: Product, url: str) -> None:
        """Append a URL to the product's primary display list."""
        product.images = [*(product.images or []), url]
        self.session.add(product)
        await self.session.flush()
