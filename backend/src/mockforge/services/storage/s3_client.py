"""S3 blob store for generated assets."""

import asyncio
from typing import Any, Protocol

import boto3
import structlog
from botocore.exceptions import BotoCoreError, ClientError

from mockforge.services.exceptions import BlobStoreError

logger = structlog.get_logger(__name__)


class BlobStore(Protocol):
    async def put(self, path: str, data: bytes, content_type: str) -> str:
        """Store bytes under ``path`` and return their public URL."""
        ...


class S3BlobStore:
    """Durable object storage addressed by path, returning public URLs."""

    def __init__(
        self,
        bucket: str,
        region: str = "us-east-1",
        public_base_url: str = "",
        client: Any = None,
    ):
        """Initialize the S3 store.

        Args:
            bucket: Target bucket (AWS_S3_BUCKET)
            region: Bucket region (AWS_REGION)
            public_base_url: CDN or custom domain serving the bucket; defaults to
                the bucket's virtual-hosted S3 URL
            client: Preconfigured boto3 S3 client (credentials come from the
                environment, ~/.aws or an IAM role when omitted)
        """
        self.bucket = bucket
        self.region = region
        self.public_base_url = public_base_url.rstrip("/")
        self._client = client or boto3.client("s3", region_name=region)

    def public_url(self, path: str) -> str:
        if self.public_base_url:
            return f"{self.public_base_url}/{path}"
        return f"https://{self.bucket}.s3.{self.region}.amazonaws.com/{path}"

    async def put(self, path: str, data: bytes, content_type: str) -> str:
        """Upload bytes and return the public URL.

        Raises:
            BlobStoreError: Bucket not configured or the upload failed
        """
        if not self.bucket:
            raise BlobStoreError("AWS_S3_BUCKET is not configured")

        try:
            await asyncio.to_thread(
                self._client.put_object,
                Bucket=self.bucket,
                Key=path,
                Body=data,
                ContentType=content_type,
            )
        except (ClientError, BotoCoreError) as e:
            logger.error("blob.upload.failed", path=path, error_message=str(e))
            raise BlobStoreError(f"S3 upload failed for {path}: {e}") from e

        logger.info("blob.uploaded", path=path, size_bytes=len(data))
        return self.public_url(path)
