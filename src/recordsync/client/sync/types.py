"""Shared types and dataclasses for sync operations.

This module provides:
- SyncError, RemoteError, InvalidTransitionError: Exception classes
- ConflictResolution: Choices offered to the user on conflict
- SyncStatus: Immutable engine status value
- SyncQueueItem: A pending upload
- UploadReport, SyncResult: Operation result dataclasses
- Type aliases for callbacks
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Any

from recordsync.core.records import format_sync_date, parse_sync_date, safe_int, safe_str
from recordsync.core.types import SyncState

if TYPE_CHECKING:
    from recordsync.client.registry import ConflictInfo


class SyncError(Exception):
    """Base exception for sync errors."""


class RemoteError(SyncError):
    """The remote store could not be reached or refused a request."""


class InvalidTransitionError(SyncError):
    """Raised when attempting invalid state transition."""


class ConflictResolution(str, Enum):
    """How the user chose to resolve a device conflict."""

    USE_THIS_DEVICE = "useThisDevice"
    USE_CLOUD_DATA = "useCloudData"
    CANCEL = "cancel"


@dataclass(frozen=True)
class SyncStatus:
    """Engine status as published to listeners.

    Only CONFLICT_DETECTED carries a conflict; every other state may
    carry a message.
    """

    state: SyncState = SyncState.IDLE
    message: str = ""
    conflict: ConflictInfo | None = None

    @classmethod
    def idle(cls) -> SyncStatus:
        return cls(SyncState.IDLE)

    @classmethod
    def syncing(cls, message: str = "Syncing...") -> SyncStatus:
        return cls(SyncState.SYNCING, message)

    @classmethod
    def success(cls, message: str) -> SyncStatus:
        return cls(SyncState.SUCCESS, message)

    @classmethod
    def failed(cls, message: str) -> SyncStatus:
        return cls(SyncState.FAILED, message)

    @classmethod
    def conflict_detected(cls, info: ConflictInfo) -> SyncStatus:
        return cls(SyncState.CONFLICT_DETECTED, "Sync conflict detected", info)

    @property
    def is_idle(self) -> bool:
        return self.state is SyncState.IDLE

    @property
    def is_error(self) -> bool:
        return self.state is SyncState.FAILED

    def __str__(self) -> str:
        if self.message:
            return f"{self.state.value}: {self.message}"
        return self.state.value


@dataclass(frozen=True)
class SyncQueueItem:
    """A record waiting to be uploaded.

    Attributes:
        sync_id: Record UUID as a string.
        entity_type: Wire name of the entity.
        created_at: Creation date of the record (drives priority).
        queued_at: When the item was (re)enqueued; FIFO tiebreak and
            compare-and-remove token.
        attempts: Passes in which the upload of this item failed.
    """

    sync_id: str
    entity_type: str
    created_at: datetime
    queued_at: datetime
    attempts: int = 0

    @property
    def filename(self) -> str:
        return f"{self.entity_type}_{self.sync_id}.json"

    def with_failure(self) -> SyncQueueItem:
        return replace(self, attempts=self.attempts + 1)

    def to_dict(self) -> dict[str, Any]:
        return {
            "syncID": self.sync_id,
            "entityType": self.entity_type,
            "createdAt": format_sync_date(self.created_at),
            "queuedAt": format_sync_date(self.queued_at),
            "attempts": self.attempts,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SyncQueueItem:
        """Create an item from its persisted form.

        Raises:
            ValueError: If a required field is missing or invalid.
        """
        sync_id = safe_str(data.get("syncID"))
        entity_type = safe_str(data.get("entityType"))
        created_at = parse_sync_date(data.get("createdAt"))
        if not sync_id or not entity_type or created_at is None:
            raise ValueError(f"Invalid queue item: {data!r}")
        return cls(
            sync_id=sync_id,
            entity_type=entity_type,
            created_at=created_at,
            queued_at=parse_sync_date(data.get("queuedAt")) or created_at,
            attempts=safe_int(data.get("attempts")) or 0,
        )


@dataclass
class UploadReport:
    """Result of uploading the pending queue.

    Attributes:
        uploaded: Items written to the remote store.
        failed: Items that stayed queued after this pass.
        abandoned: Items dropped after too many failed passes.
        errors: Error message per failed sync_id.
    """

    uploaded: list[SyncQueueItem] = field(default_factory=list)
    failed: list[SyncQueueItem] = field(default_factory=list)
    abandoned: list[SyncQueueItem] = field(default_factory=list)
    errors: dict[str, str] = field(default_factory=dict)

    @property
    def uploaded_count(self) -> int:
        return len(self.uploaded)

    @property
    def failed_count(self) -> int:
        return len(self.failed) + len(self.abandoned)


@dataclass
class SyncResult:
    """Overall result of one sync pass.

    Attributes:
        downloaded: Records applied from the remote store.
        uploaded: Records written to the remote store.
        failed: Records that could not be uploaded.
        conflict: Set when the pass stopped on a device conflict.
        error: Error message when the pass failed.
        duration: Wall clock duration in seconds.
    """

    downloaded: int = 0
    uploaded: int = 0
    failed: int = 0
    conflict: ConflictInfo | None = None
    error: str | None = None
    duration: float = 0.0

    @property
    def succeeded(self) -> bool:
        return self.error is None and self.conflict is None

    @property
    def message(self) -> str:
        """User-facing summary of a completed pass."""
        if self.downloaded == 0 and self.uploaded == 0 and self.failed == 0:
            return "Up to date"
        text = f"Synced {self.downloaded}↓ {self.uploaded}↑"
        if self.failed:
            text += f" ({self.failed} failed)"
        return text


# Type aliases for callbacks
StatusListener = Callable[[SyncStatus], None]
SignedInCheck = Callable[[], bool]
