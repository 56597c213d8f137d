"""create_pipeline_tables

Revision ID: 3b9d2f7a41c6
Revises:
Create Date: 2026-10-19 09:12:44.081327

"""

from typing import Sequence, Union

import sqlalchemy as sa

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "3b9d2f7a41c6"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create products, generation_jobs and product_assets tables."""
    op.create_table(
        "products",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("slug", sa.String(length=255), nullable=True),
        sa.Column("category", sa.String(length=100), nullable=True),
        sa.Column("images", sa.JSON(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_products_slug", "products", ["slug"])

    job_type = sa.Enum("IMAGE", "BACKGROUND_REMOVAL", "MOCKUP", "UPSCALE", name="jobtype")
    job_status = sa.Enum("QUEUED", "RUNNING", "SUCCEEDED", "FAILED", name="jobstatus")

    op.create_table(
        "generation_jobs",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("product_id", sa.Uuid(), nullable=False),
        sa.Column("type", job_type, nullable=False),
        sa.Column("status", job_status, nullable=False),
        sa.Column("input", sa.JSON(), nullable=False),
        sa.Column("attempts", sa.JSON(), nullable=False),
        sa.Column("output", sa.JSON(), nullable=True),
        sa.Column("error", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["product_id"], ["products.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_generation_jobs_product_id", "generation_jobs", ["product_id"])
    op.create_index("ix_generation_jobs_type", "generation_jobs", ["type"])
    op.create_index("ix_generation_jobs_status", "generation_jobs", ["status"])
    op.create_index("ix_generation_jobs_created_at", "generation_jobs", ["created_at"])

    asset_role = sa.Enum(
        "SOURCE", "BACKGROUND_REMOVED", "MOCKUP", "UPSCALED", name="assetrole"
    )

    op.create_table(
        "product_assets",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("product_id", sa.Uuid(), nullable=False),
        sa.Column("job_id", sa.Uuid(), nullable=True),
        sa.Column("backend_id", sa.String(length=255), nullable=True),
        sa.Column("role", asset_role, nullable=False),
        sa.Column("path", sa.String(length=1024), nullable=False),
        sa.Column("url", sa.String(length=2048), nullable=False),
        sa.Column("width", sa.Integer(), nullable=True),
        sa.Column("height", sa.Integer(), nullable=True),
        sa.Column("metadata", sa.JSON(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["product_id"], ["products.id"]),
        sa.ForeignKeyConstraint(["job_id"], ["generation_jobs.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("job_id", "backend_id", name="uq_product_assets_attempt"),
    )
    op.create_index("ix_product_assets_product_id", "product_assets", ["product_id"])
    op.create_index("ix_product_assets_job_id", "product_assets", ["job_id"])
    op.create_index("ix_product_assets_role", "product_assets", ["role"])
    op.create_index("ix_product_assets_created_at", "product_assets", ["created_at"])


def downgrade() -> None:
    """Drop pipeline tables."""
    op.drop_table("product_assets")
    op.drop_table("generation_jobs")
    op.drop_table("products")
    sa.Enum(name="assetrole").drop(op.get_bind(), checkfirst=True)
    sa.Enum(name="jobstatus").drop(op.get_bind(), checkfirst=True)
    sa.Enum(name="jobtype").drop(op.get_bind(), checkfirst=True)
