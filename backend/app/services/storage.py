"""
S3-compatible object storage for source documents and normalised page images.

Keys are hierarchical and scoped by analysis id, e.g.
``analyses/<analysis_id>/pages/page-0001.png``. boto3 is synchronous, so each
call runs in a worker thread to keep the event loop free.
"""
import os
import asyncio
import logging
from dataclasses import dataclass
from typing import Optional
from urllib.parse import urlparse

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

logger = logging.getLogger("compliance-storage")


class StorageError(RuntimeError):
    """A fetch or store against the bucket failed."""


class StorageConfigError(StorageError):
    """Bucket environment variables are missing or malformed."""


class InvalidDocumentUrl(ValueError):
    """Stored document URL does not contain a bucket and a key."""


def parse_bucket_url(bucket_url: str) -> tuple:
    """
    Split ``https://host/bucket-name`` into (endpoint_url, bucket).
    """
    parsed = urlparse(bucket_url)
    if not parsed.scheme or not parsed.netloc:
        raise StorageConfigError(f"Invalid BUCKET_URL: {bucket_url!r}")
    bucket = parsed.path.lstrip("/").split("/")[0]
    if not bucket:
        raise StorageConfigError(f"BUCKET_URL has no bucket segment: {bucket_url!r}")
    return f"{parsed.scheme}://{parsed.netloc}", bucket


def extract_file_key(document_url: str) -> str:
    """
    Document URL format: https://bucket.host/bucket-name/uploads/user-id/timestamp-file.ext
    The first path segment is the bucket; the rest is the object key.
    """
    parts = [p for p in urlparse(document_url).path.split("/") if p]
    if len(parts) < 2:
        raise InvalidDocumentUrl(f"Invalid document URL format: {document_url}")
    return "/".join(parts[1:])


@dataclass
class StorageConfig:
    endpoint_url: str
    bucket: str
    access_key: str
    secret_key: str
    region: str = "us-east-1"

    @classmethod
    def from_env(cls) -> "StorageConfig":
        bucket_url = os.getenv("BUCKET_URL")
        access_key = os.getenv("BUCKET_ACCESS_KEY")
        secret_key = os.getenv("BUCKET_SECRET_KEY")
        if not bucket_url or not access_key or not secret_key:
            raise StorageConfigError("Missing bucket configuration environment variables")
        endpoint_url, bucket = parse_bucket_url(bucket_url)
        return cls(
            endpoint_url=endpoint_url,
            bucket=bucket,
            access_key=access_key,
            secret_key=secret_key,
            region=os.getenv("BUCKET_REGION", "us-east-1"),
        )


class ObjectStorage:
    """fetch(key) -> bytes, store(key, data, content_type) -> None."""

    def __init__(self, config: Optional[StorageConfig] = None, client=None):
        self._config = config
        self._client = client

    @property
    def config(self) -> StorageConfig:
        if self._config is None:
            self._config = StorageConfig.from_env()
        return self._config

    @property
    def client(self):
        if self._client is None:
            cfg = self.config
            self._client = boto3.client(
                "s3",
                endpoint_url=cfg.endpoint_url,
                aws_access_key_id=cfg.access_key,
                aws_secret_access_key=cfg.secret_key,
                region_name=cfg.region,
                config=BotoConfig(s3={"addressing_style": "path"}),
            )
        return self._client

    def _get(self, key: str) -> bytes:
        try:
            response = self.client.get_object(Bucket=self.config.bucket, Key=key)
            return response["Body"].read()
        except (ClientError, BotoCoreError) as e:
            raise StorageError(f"Failed to fetch file from bucket: {key} ({e})") from e

    def _put(self, key: str, data: bytes, content_type: str) -> None:
        try:
            self.client.put_object(
                Bucket=self.config.bucket,
                Key=key,
                Body=data,
                ContentType=content_type,
            )
        except (ClientError, BotoCoreError) as e:
            raise StorageError(f"Failed to upload file to bucket: {key} ({e})") from e

    async def fetch(self, key: str) -> bytes:
        data = await asyncio.to_thread(self._get, key)
        logger.debug(f"Fetched {len(data)} bytes from {key}")
        return data

    async def store(self, key: str, data: bytes, content_type: str) -> None:
        await asyncio.to_thread(self._put, key, data, content_type)
        logger.debug(f"Stored {len(data)} bytes at {key} ({content_type})")
