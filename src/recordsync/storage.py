"""Object storage abstraction for sync documents.

This module provides:
- Abstract interface for key/value object storage
- LocalFSStorage for development/testing
- S3Storage for production (AWS, OVH, MinIO)

Keys are slash-separated strings such as ``records/AtomTemplate_<uuid>.json``.
"""

from __future__ import annotations

import os
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from typing import Any


class StorageError(Exception):
    """Raised when the storage backend cannot be reached or refuses a request."""


class ObjectNotFoundError(StorageError):
    """Raised when an object is not found in storage."""


@dataclass(frozen=True)
class ObjectInfo:
    """Listing entry for a stored object.

    Attributes:
        key: Full object key.
        modified_at: When the object was last written (UTC).
        size: Object size in bytes.
    """

    key: str
    modified_at: datetime
    size: int


class ObjectStorage(ABC):
    """Abstract interface for sync document storage."""

    @property
    @abstractmethod
    def location(self) -> str:
        """Return a human-readable description of where objects are stored."""

    @abstractmethod
    def put(self, key: str, data: bytes) -> None:
        """Store an object, overwriting any previous object under the same key.

        Args:
            key: Object key.
            data: Object content.
        """

    @abstractmethod
    def get(self, key: str) -> bytes:
        """Retrieve an object.

        Args:
            key: Object key.

        Returns:
            Object content.

        Raises:
            ObjectNotFoundError: If the object doesn't exist.
        """

    @abstractmethod
    def list(self, prefix: str = "") -> list[ObjectInfo]:
        """List objects whose key starts with prefix.

        Args:
            prefix: Key prefix to filter on.

        Returns:
            Listing entries sorted by key.
        """


class LocalFSStorage(ObjectStorage):
    """Local filesystem storage for development and testing.

    Keys map directly to relative paths below the base directory.
    """

    def __init__(self, base_path: Path | str) -> None:
        """Initialize local storage.

        Args:
            base_path: Base directory for object storage.
        """
        self._base_path = Path(base_path).resolve()
        self._base_path.mkdir(parents=True, exist_ok=True)

    @property
    def location(self) -> str:
        """Return the local storage path."""
        return f"Local filesystem: {self._base_path}"

    def _object_path(self, key: str) -> Path:
        """Get the file path for a key, refusing keys that escape the base path."""
        path = (self._base_path / key).resolve()
        if not path.is_relative_to(self._base_path):
            raise StorageError(f"Invalid object key: {key}")
        return path

    def put(self, key: str, data: bytes) -> None:
        """Store an object atomically."""
        path = self._object_path(key)
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp = path.with_name(path.name + ".tmp")
        tmp.write_bytes(data)
        os.replace(tmp, path)

    def get(self, key: str) -> bytes:
        """Retrieve an object."""
        path = self._object_path(key)
        if not path.is_file():
            raise ObjectNotFoundError(f"Object not found: {key}")
        return path.read_bytes()

    def list(self, prefix: str = "") -> list[ObjectInfo]:
        """List objects below the base directory."""
        entries = []
        for path in self._base_path.rglob("*"):
            if not path.is_file() or path.name.endswith(".tmp"):
                continue
            key = path.relative_to(self._base_path).as_posix()
            if not key.startswith(prefix):
                continue
            stat = path.stat()
            entries.append(
                ObjectInfo(
                    key=key,
                    modified_at=datetime.fromtimestamp(stat.st_mtime, UTC),
                    size=stat.st_size,
                )
            )
        return sorted(entries, key=lambda e: e.key)


class S3Storage(ObjectStorage):
    """S3-compatible storage for production (AWS, OVH, MinIO, etc.)."""

    def __init__(
        self,
        bucket: str,
        endpoint_url: str | None = None,
        access_key: str | None = None,
        secret_key: str | None = None,
        region: str = "us-east-1",
    ) -> None:
        """Initialize S3 storage.

        Args:
            bucket: S3 bucket name.
            endpoint_url: Custom endpoint URL (for OVH, MinIO, etc.).
            access_key: AWS access key ID.
            secret_key: AWS secret access key.
            region: AWS region (default: us-east-1).
        """
        import boto3

        self._bucket = bucket
        self._endpoint_url = endpoint_url
        self._client: Any = boto3.client(
            "s3",
            endpoint_url=endpoint_url,
            aws_access_key_id=access_key,
            aws_secret_access_key=secret_key,
            region_name=region,
        )

    @property
    def location(self) -> str:
        """Return the S3 bucket location."""
        if self._endpoint_url:
            return f"S3: {self._endpoint_url}/{self._bucket}"
        return f"S3: s3://{self._bucket}"

    def put(self, key: str, data: bytes) -> None:
        """Store an object."""
        from botocore.exceptions import BotoCoreError, ClientError

        try:
            self._client.put_object(
                Bucket=self._bucket,
                Key=key,
                Body=data,
                ContentType="application/json",
            )
        except (BotoCoreError, ClientError) as e:
            raise StorageError(f"Failed to store {key}: {e}") from e

    def get(self, key: str) -> bytes:
        """Retrieve an object."""
        from botocore.exceptions import BotoCoreError, ClientError

        try:
            response = self._client.get_object(Bucket=self._bucket, Key=key)
            body: bytes = response["Body"].read()
            return body
        except ClientError as e:
            if e.response["Error"]["Code"] in ("NoSuchKey", "404"):
                raise ObjectNotFoundError(f"Object not found: {key}") from e
            raise StorageError(f"Failed to read {key}: {e}") from e
        except BotoCoreError as e:
            raise StorageError(f"Failed to read {key}: {e}") from e

    def list(self, prefix: str = "") -> list[ObjectInfo]:
        """List objects using the paginated ListObjectsV2 API."""
        from botocore.exceptions import BotoCoreError, ClientError

        entries = []
        try:
            paginator = self._client.get_paginator("list_objects_v2")
            for page in paginator.paginate(Bucket=self._bucket, Prefix=prefix):
                for obj in page.get("Contents", []):
                    entries.append(
                        ObjectInfo(
                            key=obj["Key"],
                            modified_at=obj["LastModified"].astimezone(UTC),
                            size=obj["Size"],
                        )
                    )
        except (BotoCoreError, ClientError) as e:
            raise StorageError(f"Failed to list objects under '{prefix}': {e}") from e
        return sorted(entries, key=lambda e: e.key)


def create_storage(config: dict[str, str | None]) -> ObjectStorage:
    """Factory function to create storage from configuration.

    Args:
        config: Storage configuration dict with keys:
            - type: "local" or "s3"
            - For local: local_path
            - For S3: bucket, endpoint_url, access_key, secret_key, region

    Returns:
        Configured ObjectStorage instance.

    Raises:
        ValueError: If storage type is unknown.
    """
    storage_type = config.get("type", "local")

    if storage_type == "local":
        local_path = config.get("local_path") or "./sync-data"
        return LocalFSStorage(local_path)

    if storage_type == "s3":
        bucket = config.get("bucket")
        if not bucket:
            raise ValueError("S3 storage requires 'bucket' configuration")
        return S3Storage(
            bucket=bucket,
            endpoint_url=config.get("endpoint_url"),
            access_key=config.get("access_key"),
            secret_key=config.get("secret_key"),
            region=config.get("region") or "us-east-1",
        )

    raise ValueError(f"Unknown storage type: {storage_type}")
