"""S3-compatible object storage for re-hosted media and avatars."""

from __future__ import annotations

import os
from functools import lru_cache
from typing import Any, Protocol

import boto3

from convoflow.observability.logging import get_logger
from convoflow.observability.redaction import safe_log_context

logger = get_logger(__name__)


class ObjectStorageError(Exception):
    """Generic object storage failure."""

    pass


class StorageService(Protocol):
    """Storage provider interface."""

    def upload(self, key: str, data: bytes, content_type: str | None) -> str: ...
    def public_url(self, key: str) -> str: ...


class S3StorageService:
    """S3/MinIO/R2-backed storage provider.

    upload() returns the public URL of the stored object.
    """

    def __init__(
        self,
        bucket_name: str,
        endpoint_url: str | None = None,
        access_key: str | None = None,
        secret_key: str | None = None,
        region: str | None = None,
        public_base_url: str | None = None,
        client: Any | None = None,
    ) -> None:
        self.bucket_name = bucket_name
        self.endpoint_url = endpoint_url
        self.region = region
        self.public_base_url = public_base_url.rstrip("/") if public_base_url else None
        if client is not None:
            self.client = client
            return
        self.client = boto3.client(
            "s3",
            endpoint_url=endpoint_url,
            aws_access_key_id=access_key,
            aws_secret_access_key=secret_key,
            region_name=region,
        )

    def public_url(self, key: str) -> str:
        if self.public_base_url:
            return f"{self.public_base_url}/{key}"
        if self.endpoint_url:
            return f"{self.endpoint_url.rstrip('/')}/{self.bucket_name}/{key}"
        return f"https://{self.bucket_name}.s3.amazonaws.com/{key}"

    def upload(self, key: str, data: bytes, content_type: str | None) -> str:
        kwargs: dict = {
            "Bucket": self.bucket_name,
            "Key": key,
            "Body": data,
        }
        if content_type:
            kwargs["ContentType"] = content_type
        try:
            self.client.put_object(**kwargs)
        except Exception as exc:
            raise ObjectStorageError("Failed to upload object") from exc

        logger.info(
            "object stored",
            extra={"extra_fields": safe_log_context(key=key, size_bytes=len(data))},
        )
        return self.public_url(key)


@lru_cache(maxsize=1)
def get_s3_storage() -> S3StorageService | None:
    """Storage from MEDIA_BUCKET / S3_* env vars, or None when unconfigured."""
    bucket = os.environ.get("MEDIA_BUCKET", "")
    if not bucket:
        return None
    return S3StorageService(
        bucket_name=bucket,
        endpoint_url=os.environ.get("S3_ENDPOINT_URL") or None,
        access_key=os.environ.get("S3_ACCESS_KEY") or None,
        secret_key=os.environ.get("S3_SECRET_KEY") or None,
        region=os.environ.get("S3_REGION") or None,
        public_base_url=os.environ.get("MEDIA_PUBLIC_BASE_URL") or None,
    )
