"""Shared configuration classes for recordsync.

This module defines the configuration consumed by the storage backends,
the device identity and the sync engine.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, fields
from typing import Any

# Storage layout
RECORDS_FOLDER = "records"
DEVICE_REGISTRY_KEY = "device_registry.json"

# Engine timing defaults (seconds)
DEFAULT_FOREGROUND_COOLDOWN = 300.0
DEFAULT_STATUS_DISPLAY_SECONDS = 3.0
DEFAULT_RECENT_WINDOW = 24 * 60 * 60

# Queue and retry policy defaults
DEFAULT_MAX_QUEUE_SIZE = 10_000
DEFAULT_UPLOAD_RETRIES = 2
DEFAULT_MAX_ITEM_ATTEMPTS = 10


@dataclass
class SyncConfig:
    """Configuration for a sync client.

    Attributes:
        storage_type: "local" or "s3".
        local_path: Directory used by the local storage backend.
        bucket: S3 bucket name.
        endpoint_url: Custom S3 endpoint (MinIO, OVH, ...).
        access_key: S3 access key ID.
        secret_key: S3 secret access key.
        region: S3 region.
        prefix: Key prefix under which this account's data lives.
        device_name: Overrides the hostname as the device name.
        device_type: One of phone, tablet, simulator, unknown.
        simulator: Marks this installation as a disposable simulator.
        foreground_cooldown: Minimum seconds between throttled syncs.
        status_display_seconds: How long success/failure stays visible.
        recent_window: Age under which instance records are prioritized.
        max_queue_size: Maximum number of pending items (0 = unlimited).
        upload_retries: In-pass retries for a single record upload.
        max_item_attempts: Failed passes after which an item is abandoned.
    """

    storage_type: str = "local"
    local_path: str | None = None
    bucket: str | None = None
    endpoint_url: str | None = None
    access_key: str | None = None
    secret_key: str | None = None
    region: str = "us-east-1"
    prefix: str = ""
    device_name: str | None = None
    device_type: str | None = None
    simulator: bool = False
    foreground_cooldown: float = DEFAULT_FOREGROUND_COOLDOWN
    status_display_seconds: float = DEFAULT_STATUS_DISPLAY_SECONDS
    recent_window: float = DEFAULT_RECENT_WINDOW
    max_queue_size: int = DEFAULT_MAX_QUEUE_SIZE
    upload_retries: int = DEFAULT_UPLOAD_RETRIES
    max_item_attempts: int = DEFAULT_MAX_ITEM_ATTEMPTS

    def __post_init__(self) -> None:
        """Normalize the key prefix."""
        self.prefix = self.prefix.strip("/")

    @property
    def storage_options(self) -> dict[str, str | None]:
        """Options understood by recordsync.storage.create_storage."""
        return {
            "type": self.storage_type,
            "local_path": self.local_path,
            "bucket": self.bucket,
            "endpoint_url": self.endpoint_url,
            "access_key": self.access_key,
            "secret_key": self.secret_key,
            "region": self.region,
        }

    @property
    def is_configured(self) -> bool:
        """Check whether enough settings exist to reach remote storage."""
        if self.storage_type == "s3":
            return bool(self.bucket)
        return bool(self.local_path)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SyncConfig:
        """Create a config from a JSON mapping, ignoring unknown keys."""
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in known})

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON mapping."""
        return asdict(self)
