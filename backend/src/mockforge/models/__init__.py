"""SQLModel database entities.

All models are imported here to ensure they're registered with SQLModel metadata
for Alembic autogenerate support.
"""

from mockforge.models.asset import AssetRole, ProductAsset
from mockforge.models.attempt import Attempt, AttemptMode, AttemptStatus
from mockforge.models.job import (
    TERMINAL_STATUSES,
    GenerationJob,
    InvalidStateTransition,
    JobStatus,
    JobType,
)
from mockforge.models.product import Product

__all__ = [
    "Product",
    "GenerationJob",
    "JobType",
    "JobStatus",
    "TERMINAL_STATUSES",
    "InvalidStateTransition",
    "Attempt",
    "AttemptMode",
    "AttemptStatus",
    "ProductAsset",
    "AssetRole",
]
