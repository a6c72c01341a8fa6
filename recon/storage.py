"""Object storage for post images (AWS S3)."""
from __future__ import annotations

import asyncio
import logging

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from .config import StorageSettings

logger = logging.getLogger(__name__)


class StorageError(Exception):
    """Raised when an object cannot be stored."""
    pass


class S3Storage:
    """Uploads bytes to a bucket and returns their public URL.

    The bucket is expected to be publicly readable (or fronted by a CDN set
    in ``public_base_url``).
    """

    def __init__(self, config: StorageSettings, client=None) -> None:
        """
        Args:
            config: Bucket, region and credentials
            client: Preconfigured boto3 S3 client (built from config if None)
        """
        self.config = config
        if client is not None:
            self.client = client
        elif config.access_key_id and config.secret_access_key:
            self.client = boto3.client(
                "s3",
                region_name=config.region,
                aws_access_key_id=config.access_key_id,
                aws_secret_access_key=config.secret_access_key,
            )
        else:
            # Default credential chain (env vars, IAM role, ...)
            self.client = boto3.client("s3", region_name=config.region)

    def public_url(self, key: str) -> str:
        if self.config.public_base_url:
            return f"{self.config.public_base_url.rstrip('/')}/{key}"
        return f"https://{self.config.bucket_name}.s3.{self.config.region}.amazonaws.com/{key}"

    async def put(self, key: str, data: bytes, content_type: str) -> str:
        """Upload ``data`` under ``key``.

        Returns:
            Public URL of the stored object

        Raises:
            StorageError: If the upload fails
        """
        try:
            await asyncio.to_thread(
                self.client.put_object,
                Bucket=self.config.bucket_name,
                Key=key,
                Body=data,
                ContentType=content_type,
            )
        except (BotoCoreError, ClientError) as e:
            logger.error(f"[S3] Failed to upload {key}: {e}")
            raise StorageError(f"Upload of {key} failed: {e}") from e

        return self.public_url(key)
