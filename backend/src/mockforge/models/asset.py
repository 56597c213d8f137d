"""ProductAsset entity - a published, immutable generated artifact."""

from datetime import datetime
from enum import Enum
from typing import Optional
from uuid import UUID, uuid4

from sqlalchemy import JSON, Column, DateTime, UniqueConstraint
from sqlmodel import Field, SQLModel

from mockforge.core.timezone import utcnow


class AssetRole(str, Enum):
    """What an asset is for within a product."""

    SOURCE = "source"
    BACKGROUND_REMOVED = "background_removed"
    MOCKUP = "mockup"
    UPSCALED = "upscaled"


class ProductAsset(SQLModel, table=True):
    """ProductAsset records which blob belongs to which product and in what role.

    ``job_id``/``backend_id`` identify the attempt that produced the asset. The
    unique constraint makes "already published" a property of persisted state.
    """

    __tablename__ = "product_assets"  # type: ignore[assignment]
    __table_args__ = (UniqueConstraint("job_id", "backend_id", name="uq_product_assets_attempt"),)

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    product_id: UUID = Field(foreign_key="products.id", index=True)
    job_id: Optional[UUID] = Field(default=None, foreign_key="generation_jobs.id", index=True)
    backend_id: Optional[str] = Field(default=None, max_length=255)
    role: AssetRole = Field(index=True)
    path: str = Field(max_length=1024)
    url: str = Field(max_length=2048)
    width: Optional[int] = Field(default=None)
    height: Optional[int] = Field(default=None)
    asset_metadata: dict = Field(
        default_factory=dict, sa_column=Column("metadata", JSON, nullable=False)
    )
    created_at: datetime = Field(
        default_factory=utcnow,
        sa_column=Column(DateTime(timezone=True), nullable=False, index=True),
    )
