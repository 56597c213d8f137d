"""Product entity - the subject generation jobs produce assets for."""

import re
from datetime import datetime
from typing import Optional
from uuid import UUID, uuid4

from sqlalchemy import JSON, Column, DateTime
from sqlmodel import Field, SQLModel

from mockforge.core.timezone import utcnow


def slugify(value: str) -> str:
    return re.sub(r"[^a-z0-9]+", "-", value.lower()).strip("-")


class Product(SQLModel, table=True):
    """Product row as seen by the pipeline (name/slug for paths, display images)."""

    __tablename__ = "products"  # type: ignore[assignment]

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    name: str = Field(max_length=255)
    slug: Optional[str] = Field(default=None, max_length=255, index=True)
    category: Optional[str] = Field(default=None, max_length=100)
    # Primary display list shown on the storefront, ordered
    images: list = Field(default_factory=list, sa_column=Column(JSON, nullable=False))
    created_at: datetime = Field(
        default_factory=utcnow, sa_column=Column(DateTime(timezone=True), nullable=False)
    )

    @property
    def path_slug(self) -> str:
        """Slug used in blob paths: explicit slug, else derived from name, else short id."""
        if self.slug:
            return self.slug
        derived = slugify(self.name or "")
        return derived or str(self.id)[:8]
