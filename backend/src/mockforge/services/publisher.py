"""Asset publisher - turns a backend result into a durable catalog asset.

Resolves a backend ``result_ref`` (remote URL or inline ``data:`` URL) to
bytes, uploads them to the blob store under a deterministic path and inserts
the ProductAsset row.
"""

import base64
import binascii
import re
import time
from typing import Callable
from uuid import UUID

import httpx
import structlog
from sqlalchemy.exc import SQLAlchemyError

from mockforge.models.asset import AssetRole, ProductAsset
from mockforge.services.exceptions import AssetDownloadError, CatalogError
from mockforge.services.storage.s3_client import BlobStore

logger = structlog.get_logger(__name__)

DATA_URL_PATTERN = re.compile(r"^data:([A-Za-z0-9.+/-]+);base64,(.+)$", re.DOTALL)

CONTENT_TYPE_EXTENSIONS = {
    "image/png": "png",
    "image/jpeg": "jpg",
    "image/jpg": "jpg",
    "image/webp": "webp",
    "image/gif": "gif",
}

# role -> (top-level folder, role folder, file suffix)
ROLE_LAYOUT = {
    AssetRole.SOURCE: ("graphics", "original", "original"),
    AssetRole.BACKGROUND_REMOVED: ("graphics", "transparent", "transparent"),
    AssetRole.MOCKUP: ("mockups", None, None),
    AssetRole.UPSCALED: ("upscaled", "upscaled", "upscaled"),
}


def backend_slug(backend_id: str) -> str:
    """Filesystem-safe form of a backend id (``owner/model#role`` -> ``owner-model``)."""
    base = backend_id.split("#", 1)[0]
    return re.sub(r"[^a-z0-9]+", "-", base.lower()).strip("-") or "backend"


def build_asset_path(
    product_slug: str,
    role: AssetRole,
    content_type: str = "image/png",
    *,
    backend_id: str | None = None,
    template: str | None = None,
    timestamp_ms: int | None = None,
) -> str:
    """Derive ``{category}/{slug}/{role}/{slug}-{suffix}-{timestamp}.{ext}``.

    The backend id joins the suffix when given, so competing fan-out outputs
    of one job never share a path.
    """
    category, role_folder, suffix = ROLE_LAYOUT[role]
    if role == AssetRole.MOCKUP:
        role_folder = suffix = template or "flat_lay"

    parts = [product_slug, suffix]
    if backend_id:
        parts.append(backend_slug(backend_id))
    parts.append(str(timestamp_ms if timestamp_ms is not None else int(time.time() * 1000)))

    ext = CONTENT_TYPE_EXTENSIONS.get(content_type, "png")
    return f"{category}/{product_slug}/{role_folder}/{'-'.join(parts)}.{ext}"


class AssetPublisher:
    """Publishes successful attempts as ProductAssets."""

    def __init__(
        self,
        blob_store: BlobStore,
        http_client_factory: Callable[[], httpx.AsyncClient] | None = None,
        timeout: float = 30.0,
    ):
        self.blob_store = blob_store
        self.timeout = timeout
        self.http_client_factory = http_client_factory or (
            lambda: httpx.AsyncClient(timeout=self.timeout, follow_redirects=True)
        )

    async def resolve_result_ref(self, result_ref: str) -> tuple[bytes, str]:
        """Fetch or decode a result reference.

        Returns:
            (data, content_type)

        Raises:
            AssetDownloadError: Unsupported reference, undecodable data or failed download
        """
        match = DATA_URL_PATTERN.match(result_ref)
        if match:
            content_type, encoded = match.groups()
            try:
                return base64.b64decode(encoded, validate=False), content_type
            except (binascii.Error, ValueError) as e:
                raise AssetDownloadError(f"Invalid inline image data: {e}") from e

        if not result_ref.startswith(("http://", "https://")):
            raise AssetDownloadError(f"Unsupported result reference: {result_ref[:64]}")

        try:
            async with self.http_client_factory() as client:
                response = await client.get(result_ref)
                response.raise_for_status()
        except httpx.HTTPError as e:
            raise AssetDownloadError(f"Failed to download {result_ref}: {e}") from e

        content_type = response.headers.get("content-type", "image/png").split(";")[0].strip()
        if not content_type.startswith("image/"):
            content_type = "image/png"
        return response.content, content_type

    async def publish(
        self,
        uow,
        product_id: UUID,
        role: AssetRole,
        result_ref: str,
        backend_metadata: dict | None = None,
        *,
        job_id: UUID | None = None,
        backend_id: str | None = None,
        distinguish_backend: bool = False,
        template: str | None = None,
        width: int | None = None,
        height: int | None = None,
    ) -> ProductAsset:
        """Upload a result and record it in the asset catalog.

        The caller commits. Upload happens before any catalog write, so a
        failed upload leaves nothing to roll back.

        Raises:
            PublicationError: Download, upload or catalog insert failed
        """
        product = await uow.products.get_by_id(product_id)
        if product is None:
            raise CatalogError(f"Product {product_id} not found")

        data, content_type = await self.resolve_result_ref(result_ref)
        path = build_asset_path(
            product.path_slug,
            role,
            content_type,
            backend_id=backend_id if distinguish_backend else None,
            template=template,
        )
        url = await self.blob_store.put(path, data, content_type)

        metadata = {**(backend_metadata or {})}
        if backend_id:
            metadata.setdefault("backend_id", backend_id)
        metadata.setdefault("content_type", content_type)
        metadata.setdefault("size_bytes", len(data))

        try:
            asset = await uow.assets.add(
                ProductAsset(
                    product_id=product_id,
                    job_id=job_id,
                    backend_id=backend_id,
                    role=role,
                    path=path,
                    url=url,
                    width=width,
                    height=height,
                    asset_metadata=metadata,
                )
            )
            if role == AssetRole.MOCKUP:
                await self._add_display_mockup(uow, product, url)
        except SQLAlchemyError as e:
            raise CatalogError(f"Failed to record asset {path}: {e}") from e

        logger.info(
            "asset.published",
            product_id=str(product_id),
            job_id=str(job_id) if job_id else None,
            backend_id=backend_id,
            role=role.value,
            path=path,
            url=url,
        )
        return asset

    async def _add_display_mockup(self, uow, product, url: str) -> None:
        mockups = await uow.assets.list_by_product(product.id, roles=[AssetRole.MOCKUP])
        mockup_urls = {asset.url for asset in mockups if asset.url != url}
        if any(image in mockup_urls for image in product.images or []):
            return
        await uow.products.append_image(product, url)
