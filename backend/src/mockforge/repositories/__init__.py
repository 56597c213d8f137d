"""Repository layer for the generation pipeline.

Provides data access abstractions for all domain entities.
No base classes - each repository is self-contained.
"""

from mockforge.repositories.asset import ProductAssetRepository
from mockforge.repositories.job import GenerationJobRepository
from mockforge.repositories.product import ProductRepository

__all__ = [
    "ProductRepository",
    "GenerationJobRepository",
    "ProductAssetRepository",
]
