"""Object storage adapters for caption files, renders and mirrored videos."""

from __future__ import annotations

import pathlib
from dataclasses import dataclass
from typing import Any, Protocol
from urllib.parse import quote

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from caption_pipeline.errors import StorageError
from caption_pipeline.utils.logging_config import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class StoredObject:
    """Location of an uploaded object."""

    url: str
    path: str


class ObjectStorage(Protocol):
    """Upload and address objects by key."""

    def upload_file(self, path: str, data: bytes, content_type: str | None = None) -> StoredObject: ...

    def get_public_url(self, path: str) -> str: ...


def _clean_key(path: str) -> str:
    key = path.strip().lstrip("/")
    if not key or any(part in {"", ".", ".."} for part in key.split("/")):
        raise StorageError(f"Invalid object key: {path!r}", code="invalid_object_key")
    return key


class LocalObjectStorage:
    """Store objects as files below ``root``.

    Keys are confined to ``root``; traversal components are rejected.
    """

    def __init__(self, root: pathlib.Path, public_base_url: str = "") -> None:
        self.root = root.resolve()
        self.public_base_url = public_base_url.rstrip("/")

    def _target(self, path: str) -> pathlib.Path:
        target = (self.root / _clean_key(path)).resolve()
        if not target.is_relative_to(self.root):
            raise StorageError(f"Object key escapes storage root: {path!r}", code="invalid_object_key")
        return target

    def upload_file(self, path: str, data: bytes, content_type: str | None = None) -> StoredObject:
        target = self._target(path)
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(data)
        except OSError as exc:
            raise StorageError(f"Failed to store {path}: {exc}", code="storage_upload_failed") from exc
        logger.debug("Stored object path=%s bytes=%d type=%s", path, len(data), content_type)
        return StoredObject(url=self.get_public_url(path), path=_clean_key(path))

    def get_public_url(self, path: str) -> str:
        key = _clean_key(path)
        if self.public_base_url:
            return f"{self.public_base_url}/{quote(key)}"
        return self._target(key).as_uri()


class S3ObjectStorage:
    """Store objects in an S3-compatible bucket via ``boto3``."""

    def __init__(
        self,
        bucket: str,
        *,
        region: str = "us-east-1",
        endpoint_url: str = "",
        public_base_url: str = "",
        client: Any = None,
    ) -> None:
        self.bucket = bucket
        self.region = region
        self.public_base_url = public_base_url.rstrip("/")
        self._client = client if client is not None else boto3.client(
            "s3",
            region_name=region,
            endpoint_url=endpoint_url or None,
        )

    def upload_file(self, path: str, data: bytes, content_type: str | None = None) -> StoredObject:
        key = _clean_key(path)
        extra: dict[str, str] = {"ContentType": content_type} if content_type else {}
        try:
            self._client.put_object(Bucket=self.bucket, Key=key, Body=data, **extra)
        except (BotoCoreError, ClientError) as exc:
            raise StorageError(f"Failed to upload {key} to S3: {exc}", code="storage_upload_failed") from exc
        logger.debug("Uploaded object bucket=%s key=%s bytes=%d", self.bucket, key, len(data))
        return StoredObject(url=self.get_public_url(key), path=key)

    def get_public_url(self, path: str) -> str:
        key = quote(_clean_key(path))
        if self.public_base_url:
            return f"{self.public_base_url}/{key}"
        return f"https://{self.bucket}.s3.{self.region}.amazonaws.com/{key}"
