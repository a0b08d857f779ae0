"""
S3-compatible object storage for product images (MinIO in development).

Objects are stored flat in one bucket as ``{epoch_millis}-{filename}`` and
addressed by public URL ``{public_base}/{bucket}/{object_name}``.
"""

import time
from typing import Any, Callable, List, Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError
from fastapi import Request

from storefront.config import Settings
from storefront.logger import get_logger

logger = get_logger("tools.object_storage")


class ObjectStorage:
    """Thin wrapper over a boto3 S3 client bound to the image bucket."""

    def __init__(
        self,
        settings: Settings,
        client: Optional[Any] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.bucket = settings.s3_bucket
        self.public_base = settings.s3_public_url.rstrip("/")
        self._clock = clock
        if client is not None:
            self.client = client
        else:
            self.client = boto3.client(
                "s3",
                endpoint_url=settings.s3_endpoint_url,
                aws_access_key_id=settings.s3_access_key,
                aws_secret_access_key=settings.s3_secret_key,
            )

    def ensure_bucket(self) -> None:
        """Create the bucket if it does not exist."""
        try:
            self.client.head_bucket(Bucket=self.bucket)
        except ClientError as e:
            code = str(e.response.get("Error", {}).get("Code", ""))
            if code not in ("404", "NoSuchBucket", "NotFound"):
                raise
            self.client.create_bucket(Bucket=self.bucket)
            logger.info("Bucket %s created", self.bucket)

    def object_name(self, filename: str) -> str:
        return f"{int(self._clock() * 1000)}-{filename}"

    def public_url(self, object_name: str) -> str:
        return f"{self.public_base}/{self.bucket}/{object_name}"

    @staticmethod
    def object_name_from_url(url: str) -> str:
        """Object name is the URL's final path segment."""
        return url.rstrip("/").split("/")[-1]

    def upload(self, filename: str, data: bytes, content_type: Optional[str] = None) -> str:
        """Store an image and return its public URL."""
        name = self.object_name(filename)
        extra = {"ContentType": content_type} if content_type else {}
        self.client.put_object(Bucket=self.bucket, Key=name, Body=data, **extra)
        logger.debug("Uploaded %s (%d bytes)", name, len(data))
        return self.public_url(name)

    def delete(self, url: str) -> None:
        name = self.object_name_from_url(url)
        self.client.delete_object(Bucket=self.bucket, Key=name)
        logger.debug("Deleted %s", name)

    def delete_all(self, urls: List[str]) -> List[str]:
        """
        Remove objects that are no longer referenced by any product.

        Runs after the catalog write has committed, so a failed delete only
        leaves an orphaned object behind; it is logged and returned.
        """
        failed = []
        for url in urls:
            try:
                self.delete(url)
            except (BotoCoreError, ClientError) as e:
                logger.warning("Could not delete %s: %s", url, e)
                failed.append(url)
        return failed


def get_object_storage(request: Request) -> ObjectStorage:
    """FastAPI dependency: the application's storage client."""
    return request.app.state.object_storage
